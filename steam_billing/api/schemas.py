"""
Pydantic schemas for game-client requests and operation responses.

Field names follow what the game client sends (camelCase); Python code reads
them by their snake_case names.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientRequest(BaseModel):
    """Base for requests coming from the game client."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")


class SteamUserRequest(ClientRequest):
    """Request that only identifies a Steam user."""

    steam_id: str = Field(..., alias="steamId", min_length=1, description="64-bit Steam id")


class AuthenticateUserRequest(SteamUserRequest):
    """Session ticket validation request."""

    ticket: str = Field(..., min_length=1, description="Hex-encoded session ticket")


class InitPurchaseRequest(SteamUserRequest):
    """Request to open a purchase."""

    item_id: int = Field(..., alias="itemId", gt=0, description="Catalog item id")
    currency: str = Field(..., min_length=1, description="Requested ISO 4217 currency code")
    language: str = Field(..., min_length=1, description="ISO 639-1 language of the item description")


class PurchaseStatusRequest(ClientRequest):
    """Request for the status of an open transaction."""

    order_id: str = Field(..., alias="orderId", min_length=1)
    trans_id: str = Field(..., alias="transId", min_length=1)


class FinalizePurchaseRequest(ClientRequest):
    """Request to finalize an approved order."""

    order_id: str = Field(..., alias="orderId", min_length=1)


class CancelAgreementRequest(SteamUserRequest):
    """Request to cancel a recurring-billing agreement."""

    agreement_id: str = Field(..., alias="agreementId", min_length=1)


class OperationResponse(BaseModel):
    """Uniform result of an inbound operation."""

    success: bool = Field(..., description="Whether the operation succeeded")
    data: Dict[str, Any] = Field(default_factory=dict, description="Operation payload")
    error: Optional[str] = Field(default=None, description="Human-readable error")
    error_kind: Optional[str] = Field(
        default=None,
        description="validation, not_entitled, unknown_product, platform or internal",
    )
    status_code: int = Field(default=200, description="HTTP-style status code")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "success": True,
                    "data": {"orderid": "1234567890123456789", "transid": "987654321"},
                    "error": None,
                    "error_kind": None,
                    "status_code": 200,
                },
                {
                    "success": False,
                    "data": {},
                    "error": "The specified steamId has not purchased the app",
                    "error_kind": "not_entitled",
                    "status_code": 403,
                },
            ]
        }
    }
