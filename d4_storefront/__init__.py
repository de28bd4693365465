"""
D4 Storefront - Checkout HTTP API
"""

from .api import router

__all__ = ["router"]
