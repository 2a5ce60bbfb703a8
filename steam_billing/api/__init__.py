"""Inbound surface for game-client operations."""
from .handlers import BillingHandlers
from .schemas import OperationResponse

__all__ = ["BillingHandlers", "OperationResponse"]
