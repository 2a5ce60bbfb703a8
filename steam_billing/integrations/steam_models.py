"""
Typed Steam Web API responses.

Every microtransaction response is a tagged result: ``result`` is ``OK`` or
``Failure``, successful responses carry typed ``params`` and failures may carry
an ``error`` with code and description. An ``OK`` response without params is
rejected when the model is built, not when a field is read.
"""
from typing import Any, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ResultCode = Literal["OK", "Failure"]

ParamsT = TypeVar("ParamsT")


class SteamModel(BaseModel):
    """Base for Steam payloads: numeric ids may arrive as numbers or strings."""

    model_config = ConfigDict(coerce_numbers_to_str=True, extra="ignore", frozen=True)


class SteamErrorDetail(SteamModel):
    """Error block returned alongside a Failure result."""

    errorcode: Optional[str] = None
    errordesc: Optional[str] = None


class SteamResponse(SteamModel, Generic[ParamsT]):
    """Standard ``response`` envelope of ISteamMicroTxn methods."""

    result: ResultCode
    params: Optional[ParamsT] = None
    error: Optional[SteamErrorDetail] = None

    @model_validator(mode="before")
    @classmethod
    def drop_failure_params(cls, data: Any) -> Any:
        """Failures may echo partial params; only the error block counts."""
        if isinstance(data, dict) and data.get("result") != "OK" and "params" in data:
            return {key: value for key, value in data.items() if key != "params"}
        return data

    @model_validator(mode="after")
    def ok_requires_params(self) -> "SteamResponse[ParamsT]":
        """An OK result must carry its payload."""
        if self.result == "OK" and self.params is None:
            raise ValueError("OK response is missing params")
        return self

    @property
    def ok(self) -> bool:
        """Whether Steam accepted the call."""
        return self.result == "OK"

    @property
    def error_description(self) -> Optional[str]:
        """Steam's error description, if any."""
        return self.error.errordesc if self.error else None

    @property
    def error_code(self) -> Optional[str]:
        """Steam's error code, if any."""
        return self.error.errorcode if self.error else None


class LineItem(SteamModel):
    """One line item of a transaction."""

    itemid: str
    qty: int = 1
    amount: str
    vat: str = "0"
    itemstatus: Optional[str] = None


class OwnershipParams(SteamModel):
    """ISteamUser/CheckAppOwnership payload."""

    result: str
    ownsapp: bool = False
    permanent: bool = False
    timestamp: Optional[str] = None
    ownersteamid: Optional[str] = None
    sitelicense: bool = False


class AppOwnershipResponse(SteamModel):
    """CheckAppOwnership envelope (not wrapped in ``response``)."""

    appownership: OwnershipParams

    @property
    def ok(self) -> bool:
        """Steam answered the ownership query."""
        return self.appownership.result == "OK"

    @property
    def owns_app(self) -> bool:
        """The user owns the app and Steam answered OK."""
        return self.ok and self.appownership.ownsapp


class AuthTicketParams(SteamModel):
    """ISteamUserAuth/AuthenticateUserTicket payload."""

    result: ResultCode
    steamid: Optional[str] = None
    ownersteamid: Optional[str] = None
    vacbanned: bool = False
    publisherbanned: bool = False


class AuthTicketResponse(SteamModel):
    """AuthenticateUserTicket envelope: the result code lives inside params."""

    params: Optional[AuthTicketParams] = None
    error: Optional[SteamErrorDetail] = None

    @property
    def ok(self) -> bool:
        """Steam validated the ticket."""
        return self.params is not None and self.params.result == "OK"

    @property
    def error_description(self) -> Optional[str]:
        """Steam's error description, if any."""
        return self.error.errordesc if self.error else None


class UserInfoParams(SteamModel):
    """GetUserInfo payload."""

    state: Optional[str] = None
    country: Optional[str] = None
    currency: Optional[str] = None
    status: str


class AgreementRef(SteamModel):
    """Agreement reference returned by InitTxn."""

    agreementid: str


class InitTxnParams(SteamModel):
    """InitTxn payload."""

    orderid: str
    transid: Optional[str] = None
    steamurl: Optional[str] = None
    agreements: Optional[List[AgreementRef]] = None


class QueryTxnParams(SteamModel):
    """QueryTxn payload."""

    orderid: str
    transid: str
    steamid: Optional[str] = None
    status: str
    currency: Optional[str] = None
    time: Optional[str] = None
    country: Optional[str] = None
    usstate: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)


class FinalizeTxnParams(SteamModel):
    """FinalizeTxn payload."""

    orderid: Optional[str] = None
    transid: Optional[str] = None


class CancelAgreementParams(SteamModel):
    """CancelAgreement payload."""

    agreementid: Optional[str] = None


class AgreementInfo(SteamModel):
    """One recurring-billing agreement as reported by GetUserAgreementInfo."""

    agreementid: str
    itemid: Optional[str] = None
    status: str
    period: Optional[str] = None
    frequency: Optional[int] = None
    startdate: Optional[str] = None
    enddate: Optional[str] = None
    recurringamt: Optional[int] = None
    currency: Optional[str] = None
    timecreated: Optional[str] = None
    lastpayment: Optional[str] = None
    lastamount: Optional[int] = None
    lastamountvat: Optional[int] = None
    nextpayment: Optional[str] = None
    outstanding: Optional[int] = None
    failedattempts: Optional[int] = None


class UserAgreementParams(SteamModel):
    """GetUserAgreementInfo payload."""

    agreements: List[AgreementInfo] = Field(default_factory=list)

    @field_validator("agreements", mode="before")
    @classmethod
    def flatten_indexed_agreements(cls, v: Any) -> Any:
        """Steam may key agreements as ``agreement[0]``, ``agreement[1]``..."""
        if isinstance(v, dict):
            return [v[key] for key in sorted(v)]
        return v

    @property
    def active_agreement(self) -> Optional[AgreementInfo]:
        """Steam allows a single active agreement per user."""
        return self.agreements[0] if self.agreements else None


class ReportParams(SteamModel):
    """GetReport payload.

    Orders stay raw so that one malformed entry cannot invalidate the whole
    report; each one is validated as a ``ReportOrder`` on its own.
    """

    count: int = 0
    orders: List[Any] = Field(default_factory=list)


class ReportOrder(SteamModel):
    """One order entry of a GetReport response."""

    orderid: str
    transid: str
    steamid: str
    status: str
    currency: str
    time: str
    country: Optional[str] = None
    usstate: Optional[str] = None
    timecreated: str
    agreementid: Optional[str] = None
    agreementstatus: Optional[str] = None
    nextpayment: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)


UserInfoResponse = SteamResponse[UserInfoParams]
InitTxnResponse = SteamResponse[InitTxnParams]
QueryTxnResponse = SteamResponse[QueryTxnParams]
FinalizeTxnResponse = SteamResponse[FinalizeTxnParams]
CancelAgreementResponse = SteamResponse[CancelAgreementParams]
UserAgreementResponse = SteamResponse[UserAgreementParams]
ReportResponse = SteamResponse[ReportParams]
