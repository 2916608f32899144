"""Quote and NAV providers."""

from .client import QuoteClient
from .providers import PricePoint, PriceSourceAdapter
from .schemes import SchemeDirectory, extract_scheme_code, match_scheme_code

__all__ = [
    "QuoteClient",
    "PricePoint",
    "PriceSourceAdapter",
    "SchemeDirectory",
    "extract_scheme_code",
    "match_scheme_code",
]
