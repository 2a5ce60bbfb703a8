"""
Unit tests for inbound operation handlers.
"""
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from steam_billing.api.handlers import BillingHandlers
from steam_billing.core.agreements import AgreementOutcome, AgreementResolution
from steam_billing.core.purchase import (
    FinalizeOutcome,
    NotEntitledError,
    PlatformRejectedError,
    PurchaseInitiation,
    PurchaseOrchestrator,
    UnknownProductError,
)
from steam_billing.database.models import Transaction
from steam_billing.database.repository import PersistenceError
from steam_billing.integrations.steam_client import PlatformError
from steam_billing.integrations.steam_models import AgreementInfo, UserInfoParams

STEAM_ID = "76561198000000001"
INIT_PAYLOAD = {"steamId": STEAM_ID, "itemId": 42, "currency": "EUR", "language": "en"}


@pytest.fixture
def orchestrator() -> AsyncMock:
    return AsyncMock(spec=PurchaseOrchestrator)


@pytest.fixture
def handlers(orchestrator: AsyncMock) -> BillingHandlers:
    return BillingHandlers(orchestrator)


class TestBillingHandlers:
    """Test suite for BillingHandlers."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_init_purchase_success(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test camelCase fields reach the orchestrator."""
        orchestrator.initiate.return_value = PurchaseInitiation(
            order_id="O1", trans_id="T1", item_id=42, amount=450, currency="EUR"
        )

        response = await handlers.init_purchase(INIT_PAYLOAD)

        assert response.success
        assert response.status_code == 200
        assert response.data["transid"] == "T1"
        assert response.data["amount"] == 450
        orchestrator.initiate.assert_awaited_once_with(STEAM_ID, 42, "EUR", "en")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_fields_are_validation_errors(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test absent fields never reach the orchestrator."""
        response = await handlers.init_purchase({"steamId": STEAM_ID, "itemId": 42})

        assert not response.success
        assert response.error_kind == "validation"
        assert response.status_code == 400
        assert "currency" in response.error
        assert "language" in response.error
        orchestrator.initiate.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_empty_and_malformed_fields_are_validation_errors(
        self, handlers: BillingHandlers
    ) -> None:
        """Test empty strings and non-numeric item ids are rejected."""
        empty = await handlers.finalize_purchase({"orderId": "  "})
        malformed = await handlers.init_purchase({**INIT_PAYLOAD, "itemId": "abc"})

        assert empty.error_kind == "validation"
        assert malformed.error_kind == "validation"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_not_entitled(self, handlers: BillingHandlers, orchestrator: AsyncMock) -> None:
        """Test ownership failures are distinct from validation failures."""
        orchestrator.initiate.side_effect = NotEntitledError("not owned")

        response = await handlers.init_purchase(INIT_PAYLOAD)

        assert response.error_kind == "not_entitled"
        assert response.status_code == 403
        assert response.error == "not owned"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unknown_product(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test unknown items."""
        orchestrator.initiate.side_effect = UnknownProductError("ItemId 42 not found")

        response = await handlers.init_purchase(INIT_PAYLOAD)

        assert response.error_kind == "unknown_product"
        assert response.status_code == 400

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_platform_rejection(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test Steam's description is passed through."""
        orchestrator.initiate.side_effect = PlatformRejectedError("Invalid currency")

        response = await handlers.init_purchase(INIT_PAYLOAD)

        assert response.error_kind == "platform"
        assert response.status_code == 400
        assert response.error == "Invalid currency"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_invalid_webkey(self, handlers: BillingHandlers, orchestrator: AsyncMock) -> None:
        """Test HTTP 403 from Steam is surfaced as an invalid web key."""
        orchestrator.check_status.side_effect = PlatformError("Forbidden", status_code=403)

        response = await handlers.check_purchase_status({"orderId": "O1", "transId": "T1"})

        assert response.status_code == 403
        assert response.error == "Invalid Steam WebKey"
        assert response.error_kind == "platform"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_platform_status_code_passthrough(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test Steam's HTTP status is reused."""
        orchestrator.cancel_agreement.side_effect = PlatformError("Bad gateway", status_code=502)

        response = await handlers.cancel_agreement({"steamId": STEAM_ID, "agreementId": "A1"})

        assert response.status_code == 502

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_persistence_error_is_internal(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test store failures are internal errors."""
        orchestrator.get_user_agreement.side_effect = PersistenceError("db down")

        response = await handlers.get_user_agreement_info({"steamId": STEAM_ID})

        assert response.error_kind == "internal"
        assert response.status_code == 500
        assert response.error == "Internal server error"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_finalize_rejection_is_not_an_error(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test a Steam refusal to finalize is a normal response."""
        orchestrator.finalize.return_value = FinalizeOutcome(
            order_id="O1", success=False, error="User has not approved"
        )

        response = await handlers.finalize_purchase({"orderId": "O1"})

        assert not response.success
        assert response.status_code == 200
        assert response.error_kind is None
        assert response.error == "User has not approved"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_snake_case_fields_accepted(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test Python callers can use field names."""
        orchestrator.get_reliable_user_info.return_value = UserInfoParams(status="Trusted")

        response = await handlers.get_reliable_user_info({"steam_id": STEAM_ID})

        assert response.success
        assert response.data["status"] == "Trusted"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_untrusted_user_is_a_client_error(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test an untrusted standing answers 400 with Steam's message."""
        orchestrator.get_reliable_user_info.side_effect = PlatformError(
            "Steam API returned unknown error"
        )

        response = await handlers.get_reliable_user_info({"steamId": STEAM_ID})

        assert not response.success
        assert response.status_code == 400
        assert response.error_kind == "platform"
        assert response.error == "Steam API returned unknown error"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_app_ownership(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test a passed ownership check."""
        response = await handlers.check_app_ownership({"steamId": STEAM_ID})

        assert response.success
        orchestrator.verify_ownership.assert_awaited_once_with(STEAM_ID)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_authenticate_user_requires_ticket(self, handlers: BillingHandlers) -> None:
        """Test ticket is mandatory."""
        response = await handlers.authenticate_user({"steamId": STEAM_ID})

        assert response.error_kind == "validation"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_user_agreement_found(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test the agreement and its transaction are returned."""
        orchestrator.get_user_agreement.return_value = AgreementResolution(
            outcome=AgreementOutcome.FOUND,
            agreement=AgreementInfo(agreementid="A1", status="Active"),
            transaction=Transaction(
                orderid="O1",
                transid="T1",
                steamid=STEAM_ID,
                status="Succeeded",
                currency="USD",
                timecreated=datetime(2024, 5, 1, 10, 0),
                timeupdated=datetime(2024, 5, 1, 10, 5),
                agreementid="A1",
                itemid="42",
                amount="500",
                vat="0",
            ),
        )

        response = await handlers.get_user_agreement_info({"steamId": STEAM_ID})

        assert response.success
        assert response.data["message"] == "Valid transaction found"
        assert response.data["transaction"]["status"] == "Succeeded"
        assert response.data["transaction"]["timeupdated"] == "2024-05-01T10:05:00"
        assert response.data["agreement"]["agreementid"] == "A1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_user_agreement_without_valid_transaction(
        self, handlers: BillingHandlers, orchestrator: AsyncMock
    ) -> None:
        """Test unsuccessful lookups still answer 200 with a message."""
        orchestrator.get_user_agreement.return_value = AgreementResolution(
            outcome=AgreementOutcome.NO_VALID_TRANSACTION,
            agreement=AgreementInfo(agreementid="A1", status="Active"),
        )

        response = await handlers.get_user_agreement_info({"steamId": STEAM_ID})

        assert not response.success
        assert response.status_code == 200
        assert response.data == {
            "outcome": "no_valid_transaction",
            "message": "No valid transactions found",
            "agreementid": "A1",
        }
