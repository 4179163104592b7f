from .base import BaseVenue, QuoteProvider, get_amount_out
from .uniswap_v2 import UniswapV2Venue

__all__ = ["BaseVenue", "QuoteProvider", "UniswapV2Venue", "get_amount_out"]
