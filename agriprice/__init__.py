"""
agriprice: query resolution and caching engine for mandi commodity prices.

Example:
    >>> from agriprice import PriceQuery, get_engine
    >>> engine = get_engine()
    >>> result = await engine.resolve(PriceQuery(commodity="Onion", market="Adoni"))
"""
__version__ = "0.1.0"

from .models import PriceQuery, PriceRecord, ResolutionResult  # noqa: E402
from .services.engine import MarketPriceEngine, build_engine, get_engine  # noqa: E402

__all__ = [
    'MarketPriceEngine',
    'PriceQuery',
    'PriceRecord',
    'ResolutionResult',
    'build_engine',
    'get_engine',
]
