"""
Agreement correlation.

Steam's report does not say when a user cancels a subscription from the Steam
UI, so the current agreement comes from GetUserAgreementInfo and its payment
history from the locally reconciled transactions. Everything here is pure:
callers fetch both sides first.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional, Tuple

from steam_billing.database.models import VALID_AGREEMENT_STATUSES, Transaction
from steam_billing.integrations.steam_models import AgreementInfo

# (transaction status, agreement status) -> subscription status
StatusPolicy = Mapping[Tuple[str, str], str]


class AgreementOutcome(str, Enum):
    """Result of correlating an agreement with stored transactions."""

    FOUND = "found"
    NO_AGREEMENT = "no_agreement"
    NO_TRANSACTIONS = "no_transactions"
    NO_VALID_TRANSACTION = "no_valid_transaction"


OUTCOME_MESSAGES = {
    AgreementOutcome.FOUND: "Valid transaction found",
    AgreementOutcome.NO_AGREEMENT: "No agreement found",
    AgreementOutcome.NO_TRANSACTIONS: "No transactions found",
    AgreementOutcome.NO_VALID_TRANSACTION: "No valid transactions found",
}


@dataclass(frozen=True)
class AgreementResolution:
    """An agreement and the transaction that currently backs it."""

    outcome: AgreementOutcome
    agreement: Optional[AgreementInfo] = None
    transaction: Optional[Transaction] = None
    subscription_status: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome is AgreementOutcome.FOUND

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self.outcome]


def resolve_agreement_transaction(
    agreement: Optional[AgreementInfo],
    transactions: Iterable[Transaction],
) -> AgreementResolution:
    """
    Pick the most recent Approved/Succeeded transaction of an agreement.

    Args:
        agreement: The user's active agreement, if Steam reported one
        transactions: Stored transactions for (steamid, agreementid)

    Returns:
        AgreementResolution: ``no_transactions`` when nothing is stored,
        ``no_valid_transaction`` when rows exist but none is Approved or
        Succeeded, ``found`` otherwise
    """
    if agreement is None:
        return AgreementResolution(outcome=AgreementOutcome.NO_AGREEMENT)

    rows = list(transactions)
    if not rows:
        return AgreementResolution(outcome=AgreementOutcome.NO_TRANSACTIONS, agreement=agreement)

    valid = [row for row in rows if row.status in VALID_AGREEMENT_STATUSES]
    if not valid:
        return AgreementResolution(
            outcome=AgreementOutcome.NO_VALID_TRANSACTION, agreement=agreement
        )

    latest = max(valid, key=lambda row: row.timeupdated)
    return AgreementResolution(
        outcome=AgreementOutcome.FOUND, agreement=agreement, transaction=latest
    )


def derive_subscription_status(
    transaction: Transaction,
    agreement: AgreementInfo,
    policy: Optional[StatusPolicy],
) -> Optional[str]:
    """
    Map a transaction/agreement status pair through an integrator policy.

    No mapping is built in; without a policy, or without an entry for the
    pair, the status is unknown (None).
    """
    if not policy:
        return None
    return policy.get((transaction.status, agreement.status))
