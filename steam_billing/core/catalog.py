"""Product catalog loaded once at startup."""
import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from steam_billing.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class Product(BaseModel):
    """A purchasable item and its billing policy."""

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., description="Steam item id")
    description: str = Field(..., min_length=1, description="Description shown by Steam")
    price_per_currency: Dict[str, int] = Field(
        ..., description="Price in the currency's smallest unit, by currency code"
    )
    period: Optional[str] = Field(default=None, description="Recurrence period (Day/Week/Month/Year)")
    frequency: Optional[int] = Field(default=None, ge=1, description="Periods between charges")

    @field_validator("price_per_currency")
    @classmethod
    def validate_prices(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Currency codes are upper-cased and must stay unique; prices positive."""
        prices: Dict[str, int] = {}
        for currency, amount in v.items():
            code = currency.upper()
            if code in prices:
                raise ValueError(f"Duplicate currency {code}")
            if amount <= 0:
                raise ValueError(f"Price for {code} must be positive")
            prices[code] = amount
        return prices

    @property
    def is_recurring(self) -> bool:
        """Whether purchasing the product opens a billing agreement."""
        return self.period is not None

    def price_for(self, currency: str) -> Optional[int]:
        """Price in ``currency`` or None."""
        return self.price_per_currency.get(currency.upper())


_products_adapter = TypeAdapter(List[Product])


class ProductCatalog:
    """Read-only lookup of products by item id."""

    def __init__(self, products: Iterable[Product]):
        self._products: Dict[int, Product] = {}
        for product in products:
            if product.id in self._products:
                raise ValueError(f"Duplicate product id {product.id}")
            self._products[product.id] = product

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ProductCatalog":
        """Load the catalog from a JSON array of products."""
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        catalog = cls(_products_adapter.validate_python(raw))
        logger.info("product_catalog_loaded", path=str(path), products=len(catalog))
        return catalog

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ProductCatalog":
        """Load the catalog configured in settings."""
        settings = settings or get_settings()
        return cls.from_file(settings.products_path)

    def get(self, item_id: int) -> Optional[Product]:
        """Product with ``item_id`` or None."""
        return self._products.get(item_id)

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._products
