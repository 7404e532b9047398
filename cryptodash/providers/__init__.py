"""Upstream provider clients."""

from .base import ProviderClient
from .coingecko import CoinGeckoClient
from .cryptopanic import CryptoPanicClient
from .memes import MemeProvider
from .openrouter import OpenRouterClient
from .reddit import RedditClient

__all__ = [
    "ProviderClient",
    "CoinGeckoClient",
    "CryptoPanicClient",
    "OpenRouterClient",
    "RedditClient",
    "MemeProvider",
]
