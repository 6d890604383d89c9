import stripe
from sqlalchemy.orm import Session, joinedload, selectinload

from marketplace import config
from marketplace.auth import Principal
from marketplace.errors import Internal, InvalidState, NotFound
from marketplace.log import get_logger
from marketplace.models import Order, OrderItem, OrderStatus
from marketplace.money import to_minor_units
from marketplace.stripe_service import create_checkout_session

log = get_logger(__name__)


def build_line_item(item: OrderItem) -> dict:
    product_data = {"name": item.product_name}
    if item.product is not None and item.product.description:
        product_data["description"] = item.product.description
    return {
        "price_data": {
            "currency": config.STRIPE_CURRENCY,
            "product_data": product_data,
            "unit_amount": to_minor_units(item.price_at_purchase),
        },
        "quantity": item.quantity,
    }


def create_session(db: Session, principal: Principal, order_id: str) -> str:
    """Create a hosted checkout session for an order and store its id.

    The order's idempotency key is sent with the request, so a retried call
    gets the same session back from Stripe instead of a second one.
    """
    query = (
        db.query(Order)
        .options(selectinload(Order.items).joinedload(OrderItem.product))
        .filter(Order.id == order_id)
    )
    if not principal.is_admin:
        query = query.filter(Order.user_id == principal.user_id)
    order = query.first()
    if not order:
        raise NotFound("Order not found")
    if order.status != OrderStatus.PENDING:
        raise InvalidState("Order is not awaiting payment")

    try:
        session = create_checkout_session(
            line_items=[build_line_item(item) for item in order.items],
            metadata={"orderId": order.id},
            idempotency_key=order.idempotency_key,
        )
    except stripe.StripeError as exc:
        log.exception("checkout_session_failed", order_id=order.id)
        raise Internal("Unable to create checkout session") from exc

    order.stripe_session_id = session.id
    db.commit()
    log.info("checkout_session_created", order_id=order.id, session_id=session.id)
    return session.id
