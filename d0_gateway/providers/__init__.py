"""
Payment processor implementations for D0 Gateway
"""

from .clover import CloverProcessor
from .stripe import StripeProcessor

__all__ = [
    "StripeProcessor",
    "CloverProcessor",
]
