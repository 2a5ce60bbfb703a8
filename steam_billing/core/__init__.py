"""Core purchase and reconciliation logic."""
from .agreements import AgreementOutcome, AgreementResolution, resolve_agreement_transaction
from .catalog import Product, ProductCatalog
from .order_id import OrderIdGenerator, generate_order_id
from .purchase import (
    NotEntitledError,
    PlatformRejectedError,
    PurchaseError,
    PurchaseOrchestrator,
    PurchaseState,
    PurchaseValidationError,
    UnknownProductError,
)
from .reconciliation import ReconciliationEngine, ReconciliationError, TickResult

__all__ = [
    "AgreementOutcome",
    "AgreementResolution",
    "NotEntitledError",
    "OrderIdGenerator",
    "PlatformRejectedError",
    "Product",
    "ProductCatalog",
    "PurchaseError",
    "PurchaseOrchestrator",
    "PurchaseState",
    "PurchaseValidationError",
    "ReconciliationEngine",
    "ReconciliationError",
    "TickResult",
    "UnknownProductError",
    "generate_order_id",
    "resolve_agreement_transaction",
]
