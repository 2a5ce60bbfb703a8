"""
Inbound operation handlers.

Transport-agnostic entry points for the game client: each handler validates a
flat field mapping, calls the purchase orchestrator and folds every outcome
into an ``OperationResponse``. Any HTTP framework can mount these directly.
"""
import time
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, Mapping, Type, TypeVar

import structlog
from pydantic import ValidationError

from steam_billing.core.purchase import (
    NotEntitledError,
    PurchaseOrchestrator,
    PurchaseValidationError,
    UnknownProductError,
)
from steam_billing.database.models import Transaction
from steam_billing.database.repository import PersistenceError
from steam_billing.integrations.steam_client import PlatformError
from steam_billing.monitoring.metrics import metrics

from .schemas import (
    AuthenticateUserRequest,
    CancelAgreementRequest,
    ClientRequest,
    FinalizePurchaseRequest,
    InitPurchaseRequest,
    OperationResponse,
    PurchaseStatusRequest,
    SteamUserRequest,
)

logger = structlog.get_logger(__name__)

RequestT = TypeVar("RequestT", bound=ClientRequest)

INVALID_WEBKEY_MESSAGE = "Invalid Steam WebKey"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def _transaction_data(transaction: Transaction) -> Dict[str, Any]:
    return {
        column.key: _jsonable(getattr(transaction, column.key))
        for column in Transaction.__table__.columns
    }


def _failure(error: str, error_kind: str, status_code: int) -> OperationResponse:
    return OperationResponse(
        success=False, error=error, error_kind=error_kind, status_code=status_code
    )


class BillingHandlers:
    """Game-client operations backed by a purchase orchestrator."""

    def __init__(self, orchestrator: PurchaseOrchestrator):
        self.orchestrator = orchestrator

    async def _handle(
        self,
        operation: str,
        schema: Type[RequestT],
        payload: Mapping[str, Any],
        action: Callable[[RequestT], Awaitable[OperationResponse]],
    ) -> OperationResponse:
        """
        Validate ``payload`` and run ``action``, mapping errors to responses.

        Args:
            operation: Operation name for logs and metrics
            schema: Request model
            payload: Flat field mapping sent by the client
            action: Coroutine producing the success response

        Returns:
            OperationResponse: Success or classified failure
        """
        start_time = time.perf_counter()

        try:
            request = schema.model_validate(dict(payload))
            response = await action(request)

        except ValidationError as e:
            fields = sorted({".".join(str(part) for part in err["loc"]) for err in e.errors()})
            logger.warning("api_validation_error", operation=operation, fields=fields)
            response = _failure(f"Missing or invalid fields: {', '.join(fields)}", "validation", 400)

        except PurchaseValidationError as e:
            logger.warning("api_validation_error", operation=operation, error=str(e))
            response = _failure(str(e), "validation", 400)

        except NotEntitledError as e:
            logger.warning("api_not_entitled", operation=operation, error=str(e))
            response = _failure(str(e), "not_entitled", 403)

        except UnknownProductError as e:
            logger.warning("api_unknown_product", operation=operation, error=str(e))
            response = _failure(str(e), "unknown_product", 400)

        except PlatformError as e:
            status_code = e.status_code or 400
            message = INVALID_WEBKEY_MESSAGE if status_code == 403 else str(e)
            logger.error(
                "api_platform_error",
                operation=operation,
                error=str(e),
                error_code=e.error_code,
                status_code=status_code,
            )
            response = _failure(message, "platform", status_code)

        except PersistenceError as e:
            logger.error("api_persistence_error", operation=operation, error=str(e))
            response = _failure("Internal server error", "internal", 500)

        except Exception as e:
            logger.error("api_unexpected_error", operation=operation, error=str(e), exc_info=True)
            response = _failure("An unexpected error occurred", "internal", 500)

        metrics.record_purchase_operation(operation, response.error_kind or "success")
        logger.info(
            "api_operation_completed",
            operation=operation,
            success=response.success,
            error_kind=response.error_kind,
            duration_seconds=round(time.perf_counter() - start_time, 3),
        )
        return response

    async def authenticate_user(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Validate a session ticket for ``steamId``."""

        async def action(request: AuthenticateUserRequest) -> OperationResponse:
            params = await self.orchestrator.authenticate_user(request.steam_id, request.ticket)
            return OperationResponse(success=True, data=params.model_dump())

        return await self._handle("authenticate_user", AuthenticateUserRequest, payload, action)

    async def get_reliable_user_info(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Return purchasing standing for an Active or Trusted user."""

        async def action(request: SteamUserRequest) -> OperationResponse:
            params = await self.orchestrator.get_reliable_user_info(request.steam_id)
            return OperationResponse(success=True, data=params.model_dump())

        return await self._handle("get_reliable_user_info", SteamUserRequest, payload, action)

    async def check_app_ownership(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Succeed only when ``steamId`` owns the app."""

        async def action(request: SteamUserRequest) -> OperationResponse:
            await self.orchestrator.verify_ownership(request.steam_id)
            return OperationResponse(success=True)

        return await self._handle("check_app_ownership", SteamUserRequest, payload, action)

    async def init_purchase(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Open a Steam transaction for ``itemId``."""

        async def action(request: InitPurchaseRequest) -> OperationResponse:
            initiation = await self.orchestrator.initiate(
                request.steam_id, request.item_id, request.currency, request.language
            )
            return OperationResponse(
                success=True,
                data={
                    "orderid": initiation.order_id,
                    "transid": initiation.trans_id,
                    "itemid": initiation.item_id,
                    "amount": initiation.amount,
                    "currency": initiation.currency,
                    "agreements": list(initiation.agreement_ids),
                },
            )

        return await self._handle("init_purchase", InitPurchaseRequest, payload, action)

    async def check_purchase_status(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Return Steam's view of ``orderId``/``transId``."""

        async def action(request: PurchaseStatusRequest) -> OperationResponse:
            status = await self.orchestrator.check_status(request.order_id, request.trans_id)
            data = status.params.model_dump()
            data["state"] = status.state.value if status.state else None
            return OperationResponse(success=True, data=data)

        return await self._handle("check_purchase_status", PurchaseStatusRequest, payload, action)

    async def finalize_purchase(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Finalize ``orderId``; Steam's rejection is reported, not raised."""

        async def action(request: FinalizePurchaseRequest) -> OperationResponse:
            outcome = await self.orchestrator.finalize(request.order_id)
            return OperationResponse(
                success=outcome.success,
                data={"orderid": outcome.order_id},
                error=outcome.error,
            )

        return await self._handle("finalize_purchase", FinalizePurchaseRequest, payload, action)

    async def cancel_agreement(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Cancel ``agreementId`` for ``steamId``."""

        async def action(request: CancelAgreementRequest) -> OperationResponse:
            params = await self.orchestrator.cancel_agreement(
                request.steam_id, request.agreement_id
            )
            return OperationResponse(success=True, data=params.model_dump())

        return await self._handle("cancel_agreement", CancelAgreementRequest, payload, action)

    async def get_user_agreement_info(self, payload: Mapping[str, Any]) -> OperationResponse:
        """Return the user's agreement and the transaction currently backing it."""

        async def action(request: SteamUserRequest) -> OperationResponse:
            resolution = await self.orchestrator.get_user_agreement(request.steam_id)
            data: Dict[str, Any] = {
                "outcome": resolution.outcome.value,
                "message": resolution.message,
                "agreementid": resolution.agreement.agreementid if resolution.agreement else None,
            }
            if resolution.success:
                data["agreement"] = resolution.agreement.model_dump()
                data["transaction"] = _transaction_data(resolution.transaction)
                data["subscription_status"] = resolution.subscription_status
            return OperationResponse(success=resolution.success, data=data)

        return await self._handle("get_user_agreement_info", SteamUserRequest, payload, action)
