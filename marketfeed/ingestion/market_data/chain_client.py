"""Blockchain network stats over public JSON-RPC endpoints."""

import time
from dataclasses import dataclass, field
from typing import Any, Sequence

import httpx

from marketfeed.config.constants import (
    CHAINS,
    RPC_BLOCK_NUMBER_ID,
    RPC_GAS_PRICE_ID,
    ChainConfig,
)
from marketfeed.config.settings import settings
from marketfeed.ingestion.base import DataSource, SourceResult
from marketfeed.ingestion.batch import BatchFetcher
from marketfeed.ingestion.errors import RoundFailedError, SourceUnavailable
from marketfeed.ingestion.parsing import parse_hex_quantity
from marketfeed.tasks.cancellation import CancellationToken


@dataclass(frozen=True)
class ChainStats:
    """Per-chain metrics from one RPC round."""

    chain_id: int
    name: str
    symbol: str
    block_number: int
    gas_price_gwei: float
    tps_estimate: float
    explorer_url: str
    rpc_url: str
    rpc_issues: tuple[str, ...] = field(default=())

    @classmethod
    def empty(cls, chain: ChainConfig) -> "ChainStats":
        """Neutral values for a chain that could not be reached."""
        return cls(
            chain_id=chain.id,
            name=chain.name,
            symbol=chain.symbol,
            block_number=0,
            gas_price_gwei=0.0,
            tps_estimate=0.0,
            explorer_url=chain.explorer_url,
            rpc_url=chain.rpc_url,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain_id": self.chain_id,
            "name": self.name,
            "symbol": self.symbol,
            "block_number": self.block_number,
            "gas_price_gwei": self.gas_price_gwei,
            "tps_estimate": self.tps_estimate,
            "explorer_url": self.explorer_url,
            "rpc_url": self.rpc_url,
            "rpc_issues": list(self.rpc_issues),
        }


def build_rpc_batch() -> list[dict[str, Any]]:
    """JSON-RPC batch asking for block height and gas price."""
    return [
        {"jsonrpc": "2.0", "id": RPC_BLOCK_NUMBER_ID, "method": "eth_blockNumber", "params": []},
        {"jsonrpc": "2.0", "id": RPC_GAS_PRICE_ID, "method": "eth_gasPrice", "params": []},
    ]


def match_rpc_responses(
    payload: Any,
    request_ids: Sequence[int],
) -> tuple[dict[int, Any], list[str]]:
    """Match a batch response to request ids, regardless of array order.

    Returns:
        Results keyed by id, and a list of protocol issues (missing,
        duplicated, unexpected or errored entries). Issues never raise.
    """
    issues: list[str] = []
    results: dict[int, Any] = {}

    if not isinstance(payload, list):
        return results, ["response is not a JSON array"]

    for entry in payload:
        if not isinstance(entry, dict):
            issues.append("non-object entry in batch response")
            continue
        entry_id = entry.get("id")
        if entry_id not in request_ids:
            issues.append(f"unexpected id {entry_id!r}")
            continue
        if entry_id in results:
            issues.append(f"duplicate id {entry_id}")
            continue
        if "error" in entry:
            message = entry["error"].get("message") if isinstance(entry["error"], dict) else entry["error"]
            issues.append(f"id {entry_id} error: {message}")
            continue
        results[entry_id] = entry.get("result")

    for request_id in request_ids:
        if request_id not in results and not any(i.startswith(f"id {request_id} ") for i in issues):
            issues.append(f"missing id {request_id}")

    return results, issues


def parse_chain_stats(chain: ChainConfig, payload: Any) -> ChainStats:
    """Build ChainStats from a batch response; malformed fields become zero."""
    results, issues = match_rpc_responses(payload, (RPC_BLOCK_NUMBER_ID, RPC_GAS_PRICE_ID))

    block_number = parse_hex_quantity(results.get(RPC_BLOCK_NUMBER_ID))
    gas_price_wei = parse_hex_quantity(results.get(RPC_GAS_PRICE_ID))

    for request_id in (RPC_BLOCK_NUMBER_ID, RPC_GAS_PRICE_ID):
        raw = results.get(request_id)
        if request_id in results and parse_hex_quantity(raw) == 0 and raw not in ("0x0", "0x00"):
            issues.append(f"id {request_id} malformed quantity {raw!r}")

    tps_estimate = round(1 / chain.avg_block_time, 2) if chain.avg_block_time > 0 else 0.0

    return ChainStats(
        chain_id=chain.id,
        name=chain.name,
        symbol=chain.symbol,
        block_number=block_number,
        gas_price_gwei=round(gas_price_wei / 1e9, 2),
        tps_estimate=tps_estimate,
        explorer_url=chain.explorer_url,
        rpc_url=chain.rpc_url,
        rpc_issues=tuple(issues),
    )


class ChainClient(DataSource[list[SourceResult[ChainStats]]]):
    """JSON-RPC client collecting block height and gas price per chain."""

    source_name = "chains"

    def __init__(
        self,
        chains: Sequence[ChainConfig] = CHAINS,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = settings.http_timeout,
        degraded_after_ms: int = settings.degraded_latency_ms,
    ) -> None:
        super().__init__()
        self.chains = tuple(chains)
        self._transport = transport
        self._timeout = timeout
        self._degraded_after_ms = degraded_after_ms

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def health_check(self) -> bool:
        """Healthy when at least one chain answers."""
        try:
            results = await self.fetch_latest()
        except RoundFailedError:
            return False
        return any(not r.is_offline for r in results)

    async def fetch_chain(self, client: httpx.AsyncClient, chain: ChainConfig) -> ChainStats:
        """POST one batch to a chain's RPC endpoint.

        Raises:
            SourceUnavailable: On a non-success HTTP status
        """
        started = time.monotonic()
        resp = await client.post(chain.rpc_url, json=build_rpc_batch())
        latency_ms = int(round((time.monotonic() - started) * 1000))

        if not resp.is_success:
            raise SourceUnavailable(f"{chain.name} RPC returned {resp.status_code}", latency_ms=latency_ms)

        try:
            payload = resp.json()
        except ValueError:
            payload = None

        stats = parse_chain_stats(chain, payload)
        if stats.rpc_issues:
            self.logger.warning(f"{chain.name} RPC protocol issues: {', '.join(stats.rpc_issues)}")
        return stats

    async def fetch_latest(self, token: CancellationToken | None = None) -> list[SourceResult[ChainStats]]:
        """Fetch every configured chain in parallel.

        Raises:
            RoundFailedError: If no chain could be reached at all
        """
        async with self._client() as client:
            fetcher: BatchFetcher[ChainConfig, ChainStats] = BatchFetcher(
                fetch_one=lambda chain: self.fetch_chain(client, chain),
                fallback=ChainStats.empty,
                name_of=lambda chain: chain.name,
                queue=self.queue,
                degraded_after_ms=self._degraded_after_ms,
            )
            results = await fetcher.run(self.chains, token)

        if results and all(r.is_offline for r in results):
            raise RoundFailedError(f"All {len(results)} RPC endpoints unreachable")
        return results
