"""
Server-side product catalog

Client-supplied prices are display data only. Before anything is charged,
every cart line is resolved against this catalog and rejected if its price
disagrees.
"""
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from core.exceptions import ValidationError
from core.logging import get_logger

from .models import LineItem

logger = get_logger(__name__, domain="d1")

# Cart ids for configured packs look like "pro-pack-configured-1712345678901"
_CONFIGURED_ID = re.compile(r"^(?P<product>.+?)-configured-\d+$")


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    price_cents: int
    recurring_interval: Optional[str] = None
    subscription_discount_percent: int = 0
    total_shots: Optional[int] = None

    @property
    def is_subscription(self) -> bool:
        return self.recurring_interval is not None


DEFAULT_PRODUCTS = (
    Product(id="starter-pack", name="Starter Pack", price_cents=1999, total_shots=3),
    Product(id="pro-pack", name="Pro Pack", price_cents=4300, total_shots=7),
    Product(
        id="revive-club",
        name="Revive Club",
        price_cents=3800,
        recurring_interval="week",
        subscription_discount_percent=12,
        total_shots=7,
    ),
)


class Catalog:
    """Lookup of authoritative product prices"""

    def __init__(self, products: Iterable[Product] = DEFAULT_PRODUCTS):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def __contains__(self, product_id: str) -> bool:
        return self.resolve(product_id) is not None

    def products(self) -> List[Product]:
        return list(self._products.values())

    def resolve(self, item_id: str) -> Optional[Product]:
        """Find the product for a cart item id, including configured packs"""
        product = self._products.get(item_id)
        if product is not None:
            return product
        match = _CONFIGURED_ID.match(item_id)
        if match:
            return self._products.get(match.group("product"))
        return None

    def verify_items(self, items: Iterable[LineItem]) -> List[LineItem]:
        """
        Check every line against the catalog

        Returns the items with catalog names and prices. Raises
        ValidationError naming each offending line.
        """
        verified = []
        errors: Dict[str, str] = {}

        for index, item in enumerate(items):
            product = self.resolve(item.id)
            if product is None:
                errors[f"items.{index}.id"] = f"Unknown product: {item.id}"
                continue
            if item.unit_price_cents != product.price_cents:
                errors[f"items.{index}.price"] = "Price does not match catalog"
                logger.warning(
                    "Client price mismatch",
                    extra={
                        "item_id": item.id,
                        "client_cents": item.unit_price_cents,
                        "catalog_cents": product.price_cents,
                    },
                )
                continue
            verified.append(item.model_copy(update={"unit_price_cents": product.price_cents}))

        if errors:
            raise ValidationError("Cart contains invalid items", errors=errors)
        if not verified:
            raise ValidationError("At least one item is required", field="items")
        return verified
