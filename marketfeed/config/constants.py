"""Market constants and enumerations."""

from dataclasses import dataclass
from enum import Enum


class TransportStatus(str, Enum):
    """Connection state of a transport channel."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"
    ERROR = "error"
    UNSUPPORTED = "unsupported"

    @property
    def is_terminal(self) -> bool:
        return self in (TransportStatus.CLOSED, TransportStatus.ERROR, TransportStatus.UNSUPPORTED)


class SourceStatus(str, Enum):
    """Health of a single upstream within a batch round."""

    ONLINE = "online"
    DEGRADED = "degraded"  # Responded correctly, but slowly
    OFFLINE = "offline"


class PriceDirection(str, Enum):
    """Direction of a price tick relative to the previous one."""

    UP = "up"
    DOWN = "down"
    NEUTRAL = "neutral"


# Latency recorded for sources that never produced a response
OFFLINE_LATENCY_MS = 9999

# Rank given to tokens that are not on the trending list
UNRANKED = 99


@dataclass(frozen=True)
class ChainConfig:
    """Static description of a blockchain RPC source."""

    id: int
    name: str
    symbol: str
    rpc_url: str
    explorer_url: str
    avg_block_time: float  # seconds


# Public RPC endpoints, no API key required
CHAINS: tuple[ChainConfig, ...] = (
    ChainConfig(1, "Ethereum", "ETH", "https://eth.llamarpc.com", "https://etherscan.io", 12),
    ChainConfig(56, "BNB Chain", "BNB", "https://bsc-dataseed1.binance.org", "https://bscscan.com", 3),
    ChainConfig(137, "Polygon", "MATIC", "https://polygon.llamarpc.com", "https://polygonscan.com", 2),
    ChainConfig(42161, "Arbitrum", "ARB", "https://arb1.arbitrum.io/rpc", "https://arbiscan.io", 0.25),
    ChainConfig(10, "Optimism", "OP", "https://mainnet.optimism.io", "https://optimistic.etherscan.io", 2),
    ChainConfig(43114, "Avalanche", "AVAX", "https://api.avax.network/ext/bc/C/rpc", "https://snowtrace.io", 2),
    ChainConfig(8453, "Base", "BASE", "https://mainnet.base.org", "https://basescan.org", 2),
    ChainConfig(250, "Fantom", "FTM", "https://rpc.ftm.tools", "https://ftmscan.com", 1),
)

# JSON-RPC request ids within a per-chain batch
RPC_BLOCK_NUMBER_ID = 1
RPC_GAS_PRICE_ID = 2

# Store slice names
SLICE_NETWORKS = "networks"
SLICE_TOKENS = "tokens"
SLICE_OVERVIEW = "overview"
SLICE_PRICES = "prices"
SLICE_TRANSPORT = "transport"

# Upstream queue names
QUEUE_BINANCE = "binance"
QUEUE_COINGECKO = "coingecko"
