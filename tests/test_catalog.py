"""
Unit tests for the product catalog.
"""
import json
from typing import Any

import pytest
from pydantic import ValidationError

from steam_billing.config import Settings
from steam_billing.core.catalog import Product, ProductCatalog


class TestProduct:
    """Test suite for Product."""

    @pytest.mark.unit
    def test_currency_codes_are_upper_cased(self) -> None:
        """Test price lookups are case-insensitive."""
        product = Product(id=1, description="Item", price_per_currency={"usd": 100, "Eur": 90})

        assert product.price_per_currency == {"USD": 100, "EUR": 90}
        assert product.price_for("eur") == 90
        assert product.price_for("GBP") is None

    @pytest.mark.unit
    def test_duplicate_currency_rejected(self) -> None:
        """Test the same currency cannot be priced twice."""
        with pytest.raises(ValidationError, match="Duplicate currency USD"):
            Product(id=1, description="Item", price_per_currency={"usd": 100, "USD": 110})

    @pytest.mark.unit
    def test_non_positive_price_rejected(self) -> None:
        """Test prices must be positive."""
        with pytest.raises(ValidationError, match="must be positive"):
            Product(id=1, description="Item", price_per_currency={"USD": 0})

    @pytest.mark.unit
    def test_recurring_flag(self) -> None:
        """Test products with a period are recurring."""
        one_off = Product(id=1, description="Item", price_per_currency={"USD": 100})
        monthly = Product(
            id=2, description="Sub", price_per_currency={"USD": 100}, period="Month", frequency=1
        )

        assert not one_off.is_recurring
        assert monthly.is_recurring


class TestProductCatalog:
    """Test suite for ProductCatalog."""

    @pytest.mark.unit
    def test_get(self, catalog: ProductCatalog) -> None:
        """Test lookup by item id."""
        assert catalog.get(42).description == "Premium monthly"
        assert catalog.get(999) is None
        assert 42 in catalog
        assert len(catalog) == 2

    @pytest.mark.unit
    def test_duplicate_product_id_rejected(self) -> None:
        """Test item ids are unique."""
        product = Product(id=1, description="Item", price_per_currency={"USD": 100})

        with pytest.raises(ValueError, match="Duplicate product id 1"):
            ProductCatalog([product, product])

    @pytest.mark.unit
    def test_from_file(self, tmp_path: Any) -> None:
        """Test loading a JSON catalog."""
        path = tmp_path / "products.json"
        path.write_text(
            json.dumps(
                [
                    {
                        "id": 10,
                        "description": "Season pass",
                        "price_per_currency": {"USD": 999},
                        "period": "Year",
                        "frequency": 1,
                    }
                ]
            )
        )

        catalog = ProductCatalog.from_file(path)

        assert catalog.get(10).price_for("USD") == 999

    @pytest.mark.unit
    def test_from_settings_uses_bundled_catalog(self, test_settings: Settings) -> None:
        """Test the packaged products.json loads by default."""
        catalog = ProductCatalog.from_settings(test_settings)

        assert len(catalog) == 2
        assert catalog.get(1).price_for("USD") == 499

    @pytest.mark.unit
    def test_from_file_rejects_invalid_product(self, tmp_path: Any) -> None:
        """Test malformed catalogs fail at startup."""
        path = tmp_path / "products.json"
        path.write_text(json.dumps([{"id": 1, "description": "", "price_per_currency": {}}]))

        with pytest.raises(ValidationError):
            ProductCatalog.from_file(path)
