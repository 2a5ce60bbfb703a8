"""
Purchase orchestrator.

Drives one purchase through the Steam microtransaction flow:

    requested -> ownership_verified -> initiated -> approved | failed -> finalized

plus agreement cancellation. Every step re-checks the precondition it depends
on against Steam (ownership, result codes); nothing the caller sends is
trusted and no lock is held across Steam calls.
"""
import dataclasses
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, Union

import structlog

from steam_billing.config import Settings, get_settings
from steam_billing.core.agreements import (
    AgreementOutcome,
    AgreementResolution,
    StatusPolicy,
    derive_subscription_status,
    resolve_agreement_transaction,
)
from steam_billing.core.catalog import Product, ProductCatalog
from steam_billing.core.order_id import OrderIdGenerator
from steam_billing.database.models import VALID_AGREEMENT_STATUSES
from steam_billing.database.repository import TransactionStore
from steam_billing.integrations.steam_client import PlatformError, SteamClient
from steam_billing.integrations.steam_models import (
    AuthTicketParams,
    CancelAgreementParams,
    QueryTxnParams,
    SteamResponse,
    UserInfoParams,
)
from steam_billing.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

GENERIC_PLATFORM_ERROR = "Steam API returned unknown error"
TRUSTED_USER_STATUSES = frozenset({"Active", "Trusted"})


class PurchaseError(Exception):
    """Base exception for purchase orchestration errors."""

    pass


class PurchaseValidationError(PurchaseError):
    """Raised when caller input is missing or malformed."""

    pass


class NotEntitledError(PurchaseError):
    """Raised when an ownership or ticket check fails."""

    pass


class UnknownProductError(PurchaseError):
    """Raised when an item is not in the catalog or cannot be priced."""

    pass


class PlatformRejectedError(PlatformError):
    """Raised when Steam refuses to open a transaction."""

    pass


class PurchaseState(str, Enum):
    """Lifecycle of one purchase attempt."""

    REQUESTED = "requested"
    OWNERSHIP_VERIFIED = "ownership_verified"
    INITIATED = "initiated"
    APPROVED = "approved"
    FAILED = "failed"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


# Refund and chargeback statuses happen after the purchase lifecycle ends.
PLATFORM_STATUS_STATES = {
    "Init": PurchaseState.INITIATED,
    "Approved": PurchaseState.APPROVED,
    "Failed": PurchaseState.FAILED,
    "Succeeded": PurchaseState.FINALIZED,
}


@dataclass(frozen=True)
class PriceQuote:
    """Price resolved for a product in a currency."""

    currency: str
    amount: int
    substituted: bool = False


@dataclass(frozen=True)
class PurchaseInitiation:
    """An opened Steam transaction."""

    order_id: str
    trans_id: str
    item_id: int
    amount: int
    currency: str
    agreement_ids: Tuple[str, ...] = ()
    state: PurchaseState = PurchaseState.INITIATED


@dataclass(frozen=True)
class PurchaseStatus:
    """Steam's current view of a transaction."""

    order_id: str
    trans_id: str
    state: Optional[PurchaseState]
    params: QueryTxnParams


@dataclass(frozen=True)
class FinalizeOutcome:
    """Result of asking Steam to finalize an order."""

    order_id: str
    success: bool
    error: Optional[str] = None


def _require(**fields: Union[str, int, None]) -> None:
    missing = sorted(name for name, value in fields.items() if value in (None, ""))
    if missing:
        raise PurchaseValidationError(f"Missing fields: {', '.join(missing)}")


def _ensure_ok(response: SteamResponse) -> None:
    """Turn a Failure result into a PlatformError."""
    if not response.ok:
        raise PlatformError(
            response.error_description or GENERIC_PLATFORM_ERROR,
            error_code=response.error_code,
        )


class PurchaseOrchestrator:
    """
    Purchase lifecycle orchestrator.

    Handles ownership verification, transaction initiation, status checks,
    finalization and agreement management against Steam.
    """

    def __init__(
        self,
        steam_client: SteamClient,
        catalog: ProductCatalog,
        store: TransactionStore,
        order_ids: Optional[OrderIdGenerator] = None,
        settings: Optional[Settings] = None,
        status_policy: Optional[StatusPolicy] = None,
    ):
        """
        Initialize purchase orchestrator.

        Args:
            steam_client: Steam gateway
            catalog: Product catalog
            store: Transaction store (read for agreement history)
            order_ids: Optional order id generator
            settings: Optional settings
            status_policy: Optional (transaction, agreement) -> subscription status table
        """
        self.settings = settings or get_settings()
        self.steam_client = steam_client
        self.catalog = catalog
        self.store = store
        self.order_ids = order_ids or OrderIdGenerator(
            shard_id=self.settings.order_shard_id,
            sequence_start=self.settings.order_sequence_start,
        )
        self.status_policy = status_policy

    @staticmethod
    def _log_state(state: PurchaseState, **context: object) -> None:
        logger.info("purchase_state_changed", state=state.value, **context)

    @staticmethod
    def resolve_price(product: Product, currency: str, default_currency: str) -> PriceQuote:
        """
        Price a product in the requested currency, else in the default one.

        Raises:
            UnknownProductError: If neither currency is priced
        """
        requested = currency.upper()
        amount = product.price_for(requested)
        if amount is not None:
            return PriceQuote(currency=requested, amount=amount)

        amount = product.price_for(default_currency)
        if amount is None:
            raise UnknownProductError(
                f"Item {product.id} has no price in {requested} or {default_currency}"
            )

        logger.warning(
            "purchase_currency_substituted",
            item_id=product.id,
            requested_currency=requested,
            currency=default_currency,
        )
        metrics.record_currency_fallback(requested)
        return PriceQuote(currency=default_currency, amount=amount, substituted=True)

    async def authenticate_user(self, steam_id: str, ticket: str) -> AuthTicketParams:
        """
        Validate a client session ticket and check it belongs to ``steam_id``.

        Raises:
            NotEntitledError: If the ticket is invalid or issued to another user
        """
        _require(steam_id=steam_id, ticket=ticket)

        response = await self.steam_client.authenticate_user_ticket(ticket)
        if not response.ok or response.params is None or response.params.steamid != steam_id:
            logger.warning(
                "user_authentication_failed",
                steam_id=steam_id,
                error_description=response.error_description,
            )
            raise NotEntitledError("Invalid authentication ticket")

        logger.info("user_authenticated", steam_id=steam_id)
        return response.params

    async def get_reliable_user_info(self, steam_id: str) -> UserInfoParams:
        """
        Get the user's purchasing standing.

        Raises:
            PlatformError: If Steam does not answer OK, or the user is neither
                Active nor Trusted
        """
        _require(steam_id=steam_id)

        response = await self.steam_client.get_user_info(steam_id)
        _ensure_ok(response)
        params = response.params
        if params.status not in TRUSTED_USER_STATUSES:
            logger.warning("user_not_trusted", steam_id=steam_id, status=params.status)
            raise PlatformError(
                response.error_description or GENERIC_PLATFORM_ERROR,
                error_code=response.error_code,
            )
        return params

    async def verify_ownership(self, steam_id: str, app_id: Optional[str] = None) -> None:
        """
        Verify the user owns the app.

        Raises:
            NotEntitledError: Unless Steam answers OK with ownsapp set
        """
        _require(steam_id=steam_id)

        response = await self.steam_client.check_app_ownership(steam_id, app_id)
        if not response.owns_app:
            logger.warning(
                "app_ownership_check_failed",
                steam_id=steam_id,
                app_id=app_id or self.settings.steam_app_id,
                result=response.appownership.result,
            )
            raise NotEntitledError("The specified steamId has not purchased the app")

    async def initiate(
        self, steam_id: str, item_id: int, currency: str, language: str
    ) -> PurchaseInitiation:
        """
        Open a Steam transaction for one catalog item.

        Flow:
        1. Resolve product and price (default-currency fallback)
        2. Generate order id
        3. Re-verify app ownership
        4. Call InitTxn

        Raises:
            PurchaseValidationError: If inputs are missing
            UnknownProductError: If the item is unknown or unpriced
            NotEntitledError: If the user does not own the app
            PlatformRejectedError: If Steam refuses the transaction
        """
        _require(steam_id=steam_id, item_id=item_id, currency=currency, language=language)

        product = self.catalog.get(item_id)
        if product is None:
            raise UnknownProductError(f"ItemId {item_id} not found in the game database")

        quote = self.resolve_price(product, currency, self.settings.default_currency)
        order_id = self.order_ids.generate()
        log = logger.bind(order_id=order_id, steam_id=steam_id, item_id=item_id)
        self._log_state(PurchaseState.REQUESTED, order_id=order_id, steam_id=steam_id)

        await self.verify_ownership(steam_id)
        self._log_state(PurchaseState.OWNERSHIP_VERIFIED, order_id=order_id)

        response = await self.steam_client.init_transaction(
            order_id=order_id,
            steam_id=steam_id,
            item_id=product.id,
            amount=quote.amount,
            currency=quote.currency,
            language=language,
            description=product.description,
            period=product.period,
            frequency=product.frequency,
        )

        if not response.ok or not response.params.transid:
            log.warning(
                "purchase_initiation_rejected",
                error_code=response.error_code,
                error_description=response.error_description,
            )
            self._log_state(PurchaseState.FAILED, order_id=order_id)
            raise PlatformRejectedError(
                response.error_description or GENERIC_PLATFORM_ERROR,
                error_code=response.error_code,
            )

        params = response.params
        agreement_ids = tuple(ref.agreementid for ref in params.agreements or ())
        self._log_state(PurchaseState.INITIATED, order_id=order_id, trans_id=params.transid)
        log.info(
            "purchase_initiated",
            trans_id=params.transid,
            amount=quote.amount,
            currency=quote.currency,
        )

        return PurchaseInitiation(
            order_id=order_id,
            trans_id=params.transid,
            item_id=product.id,
            amount=quote.amount,
            currency=quote.currency,
            agreement_ids=agreement_ids,
        )

    async def check_status(self, order_id: str, trans_id: str) -> PurchaseStatus:
        """
        Query Steam for the status of a transaction.

        Raises:
            PlatformError: Unless Steam answers OK
        """
        _require(order_id=order_id, trans_id=trans_id)

        response = await self.steam_client.query_transaction(order_id, trans_id)
        _ensure_ok(response)
        params = response.params
        state = PLATFORM_STATUS_STATES.get(params.status)
        if state is not None:
            self._log_state(state, order_id=order_id, trans_id=trans_id)

        return PurchaseStatus(order_id=order_id, trans_id=trans_id, state=state, params=params)

    async def finalize(self, order_id: str) -> FinalizeOutcome:
        """
        Finalize an order the user approved in the Steam overlay.

        Not gated by a status check: Steam rejects finalizing unapproved
        orders itself and that rejection is returned, not raised.
        """
        _require(order_id=order_id)

        response = await self.steam_client.finalize_transaction(order_id)
        if response.ok:
            self._log_state(PurchaseState.FINALIZED, order_id=order_id)
        else:
            logger.warning(
                "purchase_finalize_rejected",
                order_id=order_id,
                error_description=response.error_description,
            )
        return FinalizeOutcome(
            order_id=order_id, success=response.ok, error=response.error_description
        )

    async def cancel_agreement(self, steam_id: str, agreement_id: str) -> CancelAgreementParams:
        """
        Cancel the user's recurring-billing agreement.

        Raises:
            PlatformError: Unless Steam answers OK
        """
        _require(steam_id=steam_id, agreement_id=agreement_id)

        response = await self.steam_client.cancel_agreement(steam_id, agreement_id)
        _ensure_ok(response)
        self._log_state(PurchaseState.CANCELLED, steam_id=steam_id, agreement_id=agreement_id)
        return response.params

    async def get_user_agreement(self, steam_id: str) -> AgreementResolution:
        """
        Get the user's agreement and the stored transaction backing it.

        Raises:
            PlatformError: Unless Steam answers OK
            PersistenceError: If the store cannot be read
        """
        _require(steam_id=steam_id)

        response = await self.steam_client.get_user_agreement_info(steam_id)
        _ensure_ok(response)
        agreement = response.params.active_agreement
        if agreement is None:
            return resolve_agreement_transaction(None, ())

        transactions = await self.store.latest_agreement_transactions(
            steam_id, agreement.agreementid, statuses=VALID_AGREEMENT_STATUSES, limit=1
        )
        if not transactions:
            # Newest row of any status tells "none stored" from "none valid".
            transactions = await self.store.latest_agreement_transactions(
                steam_id, agreement.agreementid, limit=1
            )
        resolution = resolve_agreement_transaction(agreement, transactions)

        logger.info(
            "user_agreement_resolved",
            steam_id=steam_id,
            agreement_id=agreement.agreementid,
            outcome=resolution.outcome.value,
        )

        if resolution.outcome is AgreementOutcome.FOUND and self.status_policy:
            return dataclasses.replace(
                resolution,
                subscription_status=derive_subscription_status(
                    resolution.transaction, agreement, self.status_policy
                ),
            )
        return resolution
