from .base import HeuristicScorer, PriceStream
from .binance import BinanceClient, BinanceTradeStream
from .chainlink import ChainlinkRpcClient
from .polymarket import PolymarketClient, PolymarketLiveStream

__all__ = [
    "BinanceClient",
    "BinanceTradeStream",
    "ChainlinkRpcClient",
    "HeuristicScorer",
    "PolymarketClient",
    "PolymarketLiveStream",
    "PriceStream",
]
