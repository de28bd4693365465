"""
Core middleware package for payment endpoint security
"""

from .security import PaymentSecurityMiddleware, contains_sensitive_data, get_client_id

__all__ = ["PaymentSecurityMiddleware", "contains_sensitive_data", "get_client_id"]
