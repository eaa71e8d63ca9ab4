"""Network adapters: market data, swap routing and the wallet."""

from tradegate.providers.dexscreener import DexScreenerClient, MarketStats, PriceQuote
from tradegate.providers.jupiter import JupiterClient, SwapExecution, SwapQuote, map_swap_error
from tradegate.providers.wallet import SolanaWallet, load_keypair

__all__ = [
    "DexScreenerClient", "MarketStats", "PriceQuote",
    "JupiterClient", "SwapExecution", "SwapQuote", "map_swap_error",
    "SolanaWallet", "load_keypair",
]
