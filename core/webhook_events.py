"""
Typed Stripe Connect webhook events.

A verified Stripe event envelope is parsed once into one of a closed set of
variants. The reconciler dispatches on the variant class; anything this
engine does not act on becomes IgnoredEvent with a reason, never a silent
default branch.
"""

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True)
class CheckoutCompleted:
    """checkout.session.completed in payment mode."""
    event_id: str
    account_id: str | None
    session_id: str
    invoice_id: str | None
    organization_id: str | None
    payment_intent_id: str | None
    amount_total: int | None


@dataclass(frozen=True)
class ChargeRefunded:
    event_id: str
    account_id: str | None
    charge_id: str
    payment_intent_id: str | None
    amount_refunded: int


@dataclass(frozen=True)
class AccountUpdated:
    event_id: str
    account_id: str
    charges_enabled: bool
    payouts_enabled: bool


@dataclass(frozen=True)
class DisputeCreated:
    event_id: str
    account_id: str | None
    dispute_id: str
    charge_id: str | None
    amount: int


@dataclass(frozen=True)
class PayoutPaid:
    event_id: str
    account_id: str | None
    payout_id: str
    amount: int


@dataclass(frozen=True)
class PayoutFailed:
    event_id: str
    account_id: str | None
    payout_id: str
    amount: int
    failure_message: str | None


@dataclass(frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str
    reason: str


WebhookEvent = Union[
    CheckoutCompleted,
    ChargeRefunded,
    AccountUpdated,
    DisputeCreated,
    PayoutPaid,
    PayoutFailed,
    IgnoredEvent,
]


def _expandable_id(value: Any) -> str | None:
    """Stripe fields like payment_intent are either an id or an expanded object."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return None


def _checkout_completed(event_id: str, account_id: str | None, obj: dict) -> WebhookEvent:
    if obj.get("mode") == "subscription":
        return IgnoredEvent(event_id, "checkout.session.completed", "subscription checkout")

    metadata = obj.get("metadata") or {}
    return CheckoutCompleted(
        event_id=event_id,
        account_id=account_id,
        session_id=obj["id"],
        invoice_id=metadata.get("invoiceId"),
        organization_id=metadata.get("organizationId"),
        payment_intent_id=_expandable_id(obj.get("payment_intent")),
        amount_total=obj.get("amount_total"),
    )


def _charge_refunded(event_id: str, account_id: str | None, obj: dict) -> WebhookEvent:
    return ChargeRefunded(
        event_id=event_id,
        account_id=account_id,
        charge_id=obj["id"],
        payment_intent_id=_expandable_id(obj.get("payment_intent")),
        amount_refunded=int(obj.get("amount_refunded") or 0),
    )


def _account_updated(event_id: str, account_id: str | None, obj: dict) -> WebhookEvent:
    return AccountUpdated(
        event_id=event_id,
        account_id=obj["id"],
        charges_enabled=bool(obj.get("charges_enabled")),
        payouts_enabled=bool(obj.get("payouts_enabled")),
    )


def _dispute_created(event_id: str, account_id: str | None, obj: dict) -> WebhookEvent:
    return DisputeCreated(
        event_id=event_id,
        account_id=account_id,
        dispute_id=obj["id"],
        charge_id=_expandable_id(obj.get("charge")),
        amount=int(obj.get("amount") or 0),
    )


def _payout_paid(event_id: str, account_id: str | None, obj: dict) -> WebhookEvent:
    return PayoutPaid(
        event_id=event_id,
        account_id=account_id,
        payout_id=obj["id"],
        amount=int(obj.get("amount") or 0),
    )


def _payout_failed(event_id: str, account_id: str | None, obj: dict) -> WebhookEvent:
    return PayoutFailed(
        event_id=event_id,
        account_id=account_id,
        payout_id=obj["id"],
        amount=int(obj.get("amount") or 0),
        failure_message=obj.get("failure_message"),
    )


_PARSERS = {
    "checkout.session.completed": _checkout_completed,
    "charge.refunded": _charge_refunded,
    "account.updated": _account_updated,
    "charge.dispute.created": _dispute_created,
    "payout.paid": _payout_paid,
    "payout.failed": _payout_failed,
}


def parse_webhook_event(envelope: dict) -> WebhookEvent:
    """
    Parse a verified Stripe event envelope into its typed variant.

    Never raises: unknown types and payloads missing required fields are
    returned as IgnoredEvent so the delivery is still acknowledged.
    """
    if not isinstance(envelope, dict):
        return IgnoredEvent("", "", "envelope is not an object")

    event_id = envelope.get("id") or ""
    event_type = envelope.get("type") or ""
    account_id = envelope.get("account")

    parser = _PARSERS.get(event_type)
    if parser is None:
        return IgnoredEvent(event_id, event_type, "unhandled event type")

    obj = (envelope.get("data") or {}).get("object")
    if not isinstance(obj, dict):
        return IgnoredEvent(event_id, event_type, "missing data.object")

    try:
        return parser(event_id, account_id, obj)
    except (KeyError, TypeError, ValueError):
        return IgnoredEvent(event_id, event_type, "malformed payload")
