"""
Factory for selecting the configured payment processor
"""
import threading
from typing import Any, Dict, Optional, Type

from core.config import get_settings
from core.logging import get_logger

from .base import PaymentProcessor
from .providers.clover import CloverProcessor
from .providers.stripe import StripeProcessor


class ProcessorFactory:
    """Thread-safe registry and cache of payment processors"""

    _instance = None
    _lock = threading.Lock()
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            with self._lock:
                if not self._initialized:
                    self.logger = get_logger("gateway.factory", domain="d0")
                    self._providers: Dict[str, Type[PaymentProcessor]] = {
                        "stripe": StripeProcessor,
                        "clover": CloverProcessor,
                    }
                    self._cache: Dict[str, PaymentProcessor] = {}
                    self._cache_lock = threading.Lock()
                    self.__class__._initialized = True

    def register_processor(self, name: str, processor_class: Type[PaymentProcessor]) -> None:
        """Register a processor implementation under a name"""
        if not issubclass(processor_class, PaymentProcessor):
            raise ValueError(f"{processor_class} must inherit from PaymentProcessor")
        with self._lock:
            self._providers[name] = processor_class
            self.logger.info(f"Registered processor: {name}")

    def get_processor_names(self) -> list[str]:
        return list(self._providers.keys())

    def create_processor(self, name: Optional[str] = None, use_cache: bool = True, **kwargs: Any) -> PaymentProcessor:
        """
        Create or retrieve the processor for a name

        Args:
            name: Processor name, defaults to settings.payment_processor
            use_cache: Whether to reuse a cached instance
            **kwargs: Passed to the processor constructor

        Raises:
            ValueError: If the processor is not registered
            ConfigurationError: If its credentials are missing
        """
        name = name or get_settings().payment_processor
        if name not in self._providers:
            available = ", ".join(self._providers.keys())
            raise ValueError(f"Unknown processor '{name}'. Available: {available}")

        if use_cache:
            with self._cache_lock:
                if name in self._cache:
                    return self._cache[name]

        processor = self._providers[name](**kwargs)

        if use_cache:
            with self._cache_lock:
                self._cache[name] = processor

        self.logger.info(f"Created processor {name}")
        return processor

    def invalidate_cache(self, name: Optional[str] = None) -> None:
        with self._cache_lock:
            if name:
                self._cache.pop(name, None)
            else:
                self._cache.clear()


def get_processor(name: Optional[str] = None) -> PaymentProcessor:
    """Get the configured payment processor"""
    return ProcessorFactory().create_processor(name)
