"""
Steam Web API client with retry logic and comprehensive error handling.

Implements:
- Explicit per-call timeouts
- Exponential backoff for transient errors on read-only calls
- Circuit breaker pattern
- Typed, tagged responses for every microtransaction method
"""
import time
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Type, TypeVar

import httpx
import structlog
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from steam_billing.config import Settings, get_settings
from steam_billing.integrations.steam_models import (
    AppOwnershipResponse,
    AuthTicketResponse,
    CancelAgreementResponse,
    FinalizeTxnResponse,
    InitTxnResponse,
    QueryTxnResponse,
    ReportResponse,
    UserAgreementResponse,
    UserInfoResponse,
)
from steam_billing.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

REPORT_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class PlatformErrorType(Enum):
    """Classification of Steam errors for retry logic."""

    TRANSIENT = "transient"  # Retry these
    PERMANENT = "permanent"  # Don't retry these


class PlatformError(Exception):
    """Raised when Steam is unreachable or rejects a call."""

    def __init__(
        self,
        message: str,
        error_type: PlatformErrorType = PlatformErrorType.PERMANENT,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        """
        Initialize platform error.

        Args:
            message: Error message (Steam's errordesc when available)
            error_type: Classification of error
            error_code: Steam error code, if any
            status_code: HTTP status code, if any
            original_error: Underlying exception
        """
        super().__init__(message)
        self.error_type = error_type
        self.error_code = error_code
        self.status_code = status_code
        self.original_error = original_error

    @property
    def transient(self) -> bool:
        """Whether retrying may succeed."""
        return self.error_type is PlatformErrorType.TRANSIENT


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, PlatformError) and error.transient


class CircuitBreaker:
    """
    Circuit breaker for Steam API calls.

    Prevents cascading failures by temporarily stopping requests
    when consecutive failures exceed a threshold.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 2,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Execute coroutine function with circuit breaker protection.

        Only transient platform errors count as failures; a permanent error
        means Steam answered.

        Raises:
            PlatformError: If circuit is open
        """
        if self.state == "open":
            if (
                self.last_failure_time
                and time.monotonic() - self.last_failure_time > self.timeout
            ):
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise PlatformError(
                    "Circuit breaker is open",
                    PlatformErrorType.TRANSIENT,
                )

        try:
            result = await func(*args, **kwargs)
        except PlatformError as e:
            if e.transient:
                self.on_failure()
            else:
                self.on_success()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning(
                "circuit_breaker_opened",
                failure_count=self.failure_count,
            )


class SteamClient:
    """
    Wrapper for the Steam microtransaction Web API.

    Features:
    - Sandbox/live interface selection
    - Per-call timeouts
    - Retry with exponential backoff on read-only calls
    - Circuit breaker pattern
    - Typed responses (see steam_models)

    Non-OK results are returned to the caller as typed responses; only
    transport, HTTP and malformed-payload problems raise PlatformError.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize Steam client.

        Args:
            settings: Optional settings (defaults to the cached instance)
            http_client: Optional pre-built httpx client (tests, shared pools)
        """
        self.settings = settings or get_settings()
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(self.settings.steam_request_timeout)
        )
        self.interface = self.settings.microtxn_interface
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=self.settings.steam_circuit_failure_threshold,
            timeout=self.settings.steam_circuit_reset_timeout,
        )

        logger.info(
            "steam_client_initialized",
            interface=self.interface,
            app_id=self.settings.steam_app_id,
        )

    async def __aenter__(self) -> "SteamClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self.http_client.aclose()

    def _url(self, interface: str, method: str, version: int, base_url: Optional[str]) -> str:
        base = base_url or self.settings.steam_partner_url
        return f"{base.rstrip('/')}/{interface}/{method}/v{version}/"

    async def _send(self, operation: str, http_method: str, url: str, data: Dict[str, str]) -> Any:
        """
        Perform one HTTP exchange and decode the JSON body.

        Raises:
            PlatformError: On transport failure, HTTP error or invalid JSON
        """
        timeout = httpx.Timeout(self.settings.steam_request_timeout)
        try:
            if http_method == "GET":
                response = await self.http_client.get(url, params=data, timeout=timeout)
            else:
                response = await self.http_client.post(url, data=data, timeout=timeout)
        except httpx.TimeoutException as e:
            raise PlatformError(
                f"Steam request timed out: {operation}",
                PlatformErrorType.TRANSIENT,
                original_error=e,
            ) from e
        except httpx.TransportError as e:
            raise PlatformError(
                f"Steam is unreachable: {e}",
                PlatformErrorType.TRANSIENT,
                original_error=e,
            ) from e

        if response.status_code == 403:
            raise PlatformError("Invalid Steam WebKey", status_code=403)
        if response.status_code == 429 or response.status_code >= 500:
            raise PlatformError(
                f"Steam returned HTTP {response.status_code}",
                PlatformErrorType.TRANSIENT,
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise PlatformError(
                f"Steam returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise PlatformError(
                f"Steam returned a non-JSON body for {operation}",
                status_code=response.status_code,
                original_error=e,
            ) from e

    async def _call(
        self,
        operation: str,
        http_method: str,
        url: str,
        data: Dict[str, str],
        retry: bool,
    ) -> Any:
        """Send through the circuit breaker, retrying transient errors when allowed."""
        attempts = self.settings.steam_retry_max_attempts if retry else 1
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=self.settings.steam_retry_base_delay,
                max=self.settings.steam_retry_base_delay * 8,
            ),
            reraise=True,
        ):
            with attempt:
                return await self.circuit_breaker.call(
                    self._send, operation, http_method, url, data
                )

    async def _request(
        self,
        model: Type[ModelT],
        operation: str,
        http_method: str,
        interface: str,
        version: int,
        data: Dict[str, str],
        envelope: Optional[str] = "response",
        base_url: Optional[str] = None,
    ) -> ModelT:
        """
        Call a Steam method and parse its payload into ``model``.

        Args:
            model: Response model
            operation: Steam method name
            http_method: GET or POST
            interface: Steam interface name
            version: Method version
            data: Query or form fields (the web key is added here)
            envelope: Top-level key holding the payload, or None
            base_url: Override of the partner base URL

        Raises:
            PlatformError: On transport, HTTP or payload-shape failures
        """
        url = self._url(interface, operation, version, base_url)
        payload_data = {"key": self.settings.steam_webkey, **data}
        start_time = time.perf_counter()

        try:
            body = await self._call(
                operation, http_method, url, payload_data, retry=http_method == "GET"
            )
            payload = body.get(envelope) if envelope and isinstance(body, dict) else body
            if payload is None:
                raise PlatformError(f"Steam response for {operation} has no '{envelope}' field")
            parsed = model.model_validate(payload)
        except ValidationError as e:
            self._record_error(operation, start_time, PlatformErrorType.PERMANENT, str(e))
            raise PlatformError(
                f"Malformed Steam response for {operation}", original_error=e
            ) from e
        except PlatformError as e:
            self._record_error(operation, start_time, e.error_type, str(e))
            raise

        ok = getattr(parsed, "ok", True)
        metrics.record_steam_api_call(
            operation, "ok" if ok else "failure", time.perf_counter() - start_time
        )
        if not ok:
            logger.warning(
                "steam_api_failure_result",
                operation=operation,
                error_description=getattr(parsed, "error_description", None),
            )
        return parsed

    def _record_error(
        self, operation: str, start_time: float, error_type: PlatformErrorType, message: str
    ) -> None:
        metrics.record_steam_api_call(operation, "error", time.perf_counter() - start_time)
        metrics.record_steam_api_error(error_type.value)
        logger.error(
            "steam_api_error",
            operation=operation,
            error_type=error_type.value,
            error_message=message,
        )

    async def check_app_ownership(
        self, steam_id: str, app_id: Optional[str] = None
    ) -> AppOwnershipResponse:
        """
        Check whether the user owns the app.

        See https://partner.steamgames.com/doc/webapi/ISteamUser#CheckAppOwnership
        """
        return await self._request(
            AppOwnershipResponse,
            "CheckAppOwnership",
            "GET",
            "ISteamUser",
            2,
            {"steamid": steam_id, "appid": app_id or self.settings.steam_app_id},
            envelope=None,
        )

    async def authenticate_user_ticket(self, ticket: str) -> AuthTicketResponse:
        """
        Validate a session ticket issued to the game client.

        See https://partner.steamgames.com/doc/webapi/ISteamUserAuth#AuthenticateUserTicket
        """
        return await self._request(
            AuthTicketResponse,
            "AuthenticateUserTicket",
            "GET",
            "ISteamUserAuth",
            1,
            {"appid": self.settings.steam_app_id, "ticket": ticket},
        )

    async def get_user_info(self, steam_id: str) -> UserInfoResponse:
        """
        Get the user's purchasing standing, used to screen out scammers.

        See https://partner.steamgames.com/doc/webapi/ISteamMicroTxn#GetUserInfo
        """
        return await self._request(
            UserInfoResponse, "GetUserInfo", "GET", self.interface, 2, {"steamid": steam_id}
        )

    async def init_transaction(
        self,
        order_id: str,
        steam_id: str,
        item_id: int,
        amount: int,
        currency: str,
        language: str,
        description: str,
        period: Optional[str] = None,
        frequency: Optional[int] = None,
    ) -> InitTxnResponse:
        """
        Open a single-item transaction.

        If the user has the app running, Steam shows the purchase dialog.
        Recurring fields are sent when the product has a billing period.

        See https://partner.steamgames.com/doc/webapi/ISteamMicroTxn#InitTxn
        """
        data = {
            "orderid": order_id,
            "steamid": steam_id,
            "appid": self.settings.steam_app_id,
            "itemcount": "1",
            "currency": currency,
            "language": language,
            "usersession": "client",
            "itemid[0]": str(item_id),
            "qty[0]": "1",
            "amount[0]": str(amount),
            "description[0]": description,
        }
        if period:
            data.update(
                {
                    "category[0]": "Subscription",
                    "billingtype[0]": "Steam",
                    "period[0]": period,
                    "frequency[0]": str(frequency or 1),
                    # Documented as optional, rejected by Steam when missing
                    "recurringamt[0]": str(amount),
                }
            )

        return await self._request(
            InitTxnResponse,
            "InitTxn",
            "POST",
            self.interface,
            3,
            data,
            base_url=self.settings.steam_public_url,
        )

    async def query_transaction(self, order_id: str, trans_id: str) -> QueryTxnResponse:
        """
        Query the status of a transaction.

        See https://partner.steamgames.com/doc/webapi/ISteamMicroTxn#QueryTxn
        """
        return await self._request(
            QueryTxnResponse,
            "QueryTxn",
            "GET",
            self.interface,
            2,
            {"orderid": order_id, "transid": trans_id, "appid": self.settings.steam_app_id},
        )

    async def finalize_transaction(self, order_id: str) -> FinalizeTxnResponse:
        """
        Complete a purchase the user authorized in the Steam overlay.

        See https://partner.steamgames.com/doc/webapi/ISteamMicroTxn#FinalizeTxn
        """
        return await self._request(
            FinalizeTxnResponse,
            "FinalizeTxn",
            "POST",
            self.interface,
            2,
            {"orderid": order_id, "appid": self.settings.steam_app_id},
        )

    async def cancel_agreement(self, steam_id: str, agreement_id: str) -> CancelAgreementResponse:
        """
        Cancel a recurring-billing agreement.

        See https://partner.steamgames.com/doc/webapi/ISteamMicroTxn#CancelAgreement
        """
        return await self._request(
            CancelAgreementResponse,
            "CancelAgreement",
            "POST",
            self.interface,
            1,
            {
                "steamid": steam_id,
                "appid": self.settings.steam_app_id,
                "agreementid": agreement_id,
            },
        )

    async def get_user_agreement_info(self, steam_id: str) -> UserAgreementResponse:
        """
        Get the user's recurring-billing agreement.

        See https://partner.steamgames.com/doc/webapi/ISteamMicroTxn#GetUserAgreementInfo
        """
        return await self._request(
            UserAgreementResponse,
            "GetUserAgreementInfo",
            "GET",
            self.interface,
            2,
            {"steamid": steam_id, "appid": self.settings.steam_app_id},
        )

    async def get_report(
        self, window_start: datetime, max_results: Optional[int] = None
    ) -> ReportResponse:
        """
        Get the transaction report for orders updated since ``window_start``.

        Args:
            window_start: UTC start of the report window
            max_results: Max orders returned (defaults to report_max_results)

        See https://partner.steamgames.com/doc/webapi/ISteamMicroTxn#GetReport
        """
        return await self._request(
            ReportResponse,
            "GetReport",
            "GET",
            self.interface,
            5,
            {
                "appid": self.settings.steam_app_id,
                "type": self.settings.report_type,
                "time": window_start.strftime(REPORT_TIME_FORMAT),
                "maxresults": str(max_results or self.settings.report_max_results),
            },
        )
