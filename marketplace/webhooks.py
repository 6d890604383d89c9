"""Applies Stripe webhook events to orders, payments and refunds.

Stripe delivers events at least once and in no particular order, so every
handler is written to be replayed safely:

* an event id already recorded in ``stripe_events`` is acknowledged and skipped;
* payments are upserted by payment intent id; refunds are keyed by refund id,
  or by how much the charge's refunded total grew;
* a payment remembers the ``created`` timestamp of the newest event applied to
  it and ignores older ones, so a late ``payment_failed`` cannot undo a success;
* references to unknown orders or payments are ignored, not treated as errors.

Each event is applied in a single transaction.
"""
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.orm import Session

from marketplace import config
from marketplace.log import get_logger
from marketplace.models import (
    Order,
    OrderStatus,
    Payment,
    PaymentStatus,
    Refund,
    RefundStatus,
    StripeEvent,
)
from marketplace.money import from_minor_units, quantize
from marketplace.stripe_service import retrieve_latest_charge

log = get_logger(__name__)

APPLIED = "applied"
IGNORED = "ignored"
DUPLICATE = "duplicate"

HANDLERS = {}


def handles(event_type: str):
    def register(fn):
        HANDLERS[event_type] = fn
        return fn
    return register


def _object_id(value):
    # Stripe sends either an id string or an expanded object
    if value is None or isinstance(value, str):
        return value
    return value["id"]


def _is_stale(payment: Payment, created) -> bool:
    return (
        created is not None
        and payment.last_event_created is not None
        and created < payment.last_event_created
    )


def _stamp(payment: Payment, created):
    if created is not None:
        payment.last_event_created = max(created, payment.last_event_created or created)


def handle_event(db: Session, event: dict) -> str:
    """Apply a verified event and return ``applied``, ``ignored`` or ``duplicate``.

    Exceptions roll the transaction back and propagate so that the caller can
    answer with a server error and let Stripe redeliver.
    """
    event_id = event.get("id")
    event_type = event.get("type")
    handler = HANDLERS.get(event_type)
    if handler is None:
        log.info("webhook_ignored", event_id=event_id, event_type=event_type, reason="unhandled_type")
        return IGNORED

    if event_id and db.query(StripeEvent).filter_by(event_id=event_id).first():
        log.info("webhook_duplicate", event_id=event_id, event_type=event_type)
        return DUPLICATE

    obj = (event.get("data") or {}).get("object") or {}
    try:
        outcome = handler(db, obj, event.get("created"))
        if outcome == APPLIED and event_id:
            db.add(StripeEvent(event_id=event_id, event_type=event_type))
        db.commit()
    except Exception:
        db.rollback()
        log.exception("webhook_failed", event_id=event_id, event_type=event_type)
        raise

    log.info("webhook_" + outcome, event_id=event_id, event_type=event_type)
    return outcome


@handles("checkout.session.completed")
def checkout_completed(db: Session, session: dict, created) -> str:
    order_id = (session.get("metadata") or {}).get("orderId")
    order = db.get(Order, order_id) if order_id else None
    if not order:
        return IGNORED

    payment_intent_id = _object_id(session.get("payment_intent"))
    if order.status == OrderStatus.PENDING:
        order.status = OrderStatus.PAID
    if order.status != OrderStatus.REFUNDED:
        order.payment_status = PaymentStatus.SUCCEEDED
        order.paid_at = order.paid_at or datetime.now(timezone.utc)
    if payment_intent_id and not order.stripe_payment_intent_id:
        order.stripe_payment_intent_id = payment_intent_id

    if not payment_intent_id:
        log.warning("checkout_without_payment_intent", order_id=order.id, session_id=session.get("id"))
        return APPLIED

    charge_id = retrieve_latest_charge(payment_intent_id)
    amount = from_minor_units(session.get("amount_total") or 0)
    currency = (session.get("currency") or config.STRIPE_CURRENCY).upper()

    payment = db.query(Payment).filter_by(stripe_payment_intent_id=payment_intent_id).first()
    if payment is None:
        payment = Payment(
            order_id=order.id,
            stripe_payment_intent_id=payment_intent_id,
            stripe_charge_id=charge_id,
            amount=amount,
            currency=currency,
            status=PaymentStatus.SUCCEEDED,
        )
        _stamp(payment, created)
        db.add(payment)
    elif payment.status != PaymentStatus.REFUNDED and not _is_stale(payment, created):
        payment.order_id = payment.order_id or order.id
        payment.amount = amount
        payment.currency = currency
        payment.stripe_charge_id = charge_id or payment.stripe_charge_id
        payment.status = PaymentStatus.SUCCEEDED
        _stamp(payment, created)
    return APPLIED


@handles("payment_intent.succeeded")
def payment_succeeded(db: Session, intent: dict, created) -> str:
    payment = db.query(Payment).filter_by(stripe_payment_intent_id=intent.get("id")).first()
    if not payment or payment.status == PaymentStatus.REFUNDED or _is_stale(payment, created):
        return IGNORED

    payment.status = PaymentStatus.SUCCEEDED
    payment.stripe_charge_id = _object_id(intent.get("latest_charge")) or payment.stripe_charge_id
    _stamp(payment, created)
    return APPLIED


@handles("payment_intent.payment_failed")
def payment_failed(db: Session, intent: dict, created) -> str:
    payment = db.query(Payment).filter_by(stripe_payment_intent_id=intent.get("id")).first()
    if not payment or payment.status == PaymentStatus.REFUNDED or _is_stale(payment, created):
        return IGNORED

    payment.status = PaymentStatus.FAILED
    _stamp(payment, created)
    return APPLIED


def _refund_amount(db: Session, charge: dict, refund: dict, payment: Payment):
    """Amount of this refund: the refund object when the event carries one,
    else what the charge's cumulative ``amount_refunded`` adds to the refunds
    already recorded, else whatever of the payment is not refunded yet.
    """
    if refund.get("amount"):
        return from_minor_units(refund["amount"])

    recorded = quantize(
        db.query(func.coalesce(func.sum(Refund.amount), 0))
        .filter(Refund.payment_id == payment.id)
        .scalar()
    )
    if charge.get("amount_refunded"):
        return from_minor_units(charge["amount_refunded"]) - recorded
    return quantize(payment.amount) - recorded


@handles("charge.refunded")
def charge_refunded(db: Session, charge: dict, created) -> str:
    charge_id = charge.get("id")
    payment = db.query(Payment).filter_by(stripe_charge_id=charge_id).first() if charge_id else None
    payment_intent_id = _object_id(charge.get("payment_intent"))
    if payment is None and payment_intent_id:
        payment = db.query(Payment).filter_by(stripe_payment_intent_id=payment_intent_id).first()
    if not payment or not payment.order_id:
        return IGNORED

    refunds = (charge.get("refunds") or {}).get("data") or []
    refund = refunds[0] if refunds else {}
    refund_id = refund.get("id")
    if refund_id and db.query(Refund).filter_by(stripe_refund_id=refund_id).first():
        return IGNORED
    amount = _refund_amount(db, charge, refund, payment)
    if amount <= 0:
        return IGNORED

    db.add(Refund(
        payment_id=payment.id,
        amount=amount,
        currency=payment.currency,
        reason=refund.get("reason") or "refunded",
        stripe_refund_id=refund_id,
        status=RefundStatus.SUCCEEDED,
    ))
    payment.status = PaymentStatus.REFUNDED
    payment.stripe_charge_id = payment.stripe_charge_id or charge_id
    _stamp(payment, created)

    order = payment.order
    order.status = OrderStatus.REFUNDED
    order.payment_status = PaymentStatus.REFUNDED
    return APPLIED
