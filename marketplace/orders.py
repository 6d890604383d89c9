"""Order placement: turns a user's cart into a priced, stock-committed order."""
import uuid
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from marketplace.errors import (
    EmptyCart,
    InsufficientStock,
    Internal,
    MarketplaceError,
    NotFound,
    ProductUnavailable,
)
from marketplace.log import get_logger
from marketplace.models import CartItem, Order, OrderItem, OrderStatus, PaymentStatus, Product, ProductStatus
from marketplace.money import line_total, quantize
from marketplace.pagination import paginate

log = get_logger(__name__)


def _validate_cart(cart_items):
    for item in cart_items:
        product = item.product
        if product.status != ProductStatus.AVAILABLE:
            raise ProductUnavailable(product.id, product.title)
        if product.stock is not None and product.stock < item.quantity:
            raise InsufficientStock(product.id, product.title, product.stock)


def reserve_stock(db: Session, product: Product, quantity: int):
    """Decrement tracked stock by ``quantity`` unless that would take it below zero.

    The decrement is a relative UPDATE guarded by ``stock >= quantity`` so that
    concurrent orders serialize in the database instead of racing on a stale read.
    """
    if product.stock is None:
        return
    updated = (
        db.query(Product)
        .filter(Product.id == product.id, Product.stock >= quantity)
        .update({Product.stock: Product.stock - quantity}, synchronize_session=False)
    )
    if updated == 0:
        raise InsufficientStock(product.id, product.title)


def create_order_from_cart(db: Session, user_id: str) -> Order:
    cart_items = (
        db.query(CartItem)
        .options(joinedload(CartItem.product))
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.created_at)
        .all()
    )
    if not cart_items:
        raise EmptyCart()

    _validate_cart(cart_items)

    total = quantize(sum((line_total(i.product.price, i.quantity) for i in cart_items), Decimal("0")))
    order = Order(
        user_id=user_id,
        total_amount=total,
        status=OrderStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        idempotency_key=str(uuid.uuid4()),
        items=[
            OrderItem(
                product_id=i.product_id,
                quantity=i.quantity,
                price_at_purchase=quantize(i.product.price),
                product_name=i.product.title,
            )
            for i in cart_items
        ],
    )

    try:
        db.add(order)
        for item in cart_items:
            reserve_stock(db, item.product, item.quantity)
        db.query(CartItem).filter(CartItem.user_id == user_id).delete(synchronize_session=False)
        db.commit()
    except MarketplaceError as exc:
        db.rollback()
        log.warning("order_rejected", user_id=user_id, reason=exc.message)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        log.exception("order_failed", user_id=user_id)
        raise Internal("Unable to place order") from exc

    db.refresh(order)
    log.info("order_placed", order_id=order.id, user_id=user_id,
             total_amount=str(order.total_amount), items=len(order.items))
    return order


def get_order_for_user(db: Session, user_id: str, order_id: str) -> Order:
    order = (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.id == order_id, Order.user_id == user_id)
        .first()
    )
    if not order:
        raise NotFound("Order not found")
    return order


def list_orders_for_user(db: Session, user_id: str, page: int, limit: int):
    query = (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc())
    )
    return paginate(query, page, limit)


def list_all_orders(db: Session, page: int, limit: int):
    query = db.query(Order).options(selectinload(Order.items)).order_by(Order.created_at.desc())
    return paginate(query, page, limit)


def update_order_status(db: Session, order_id: str, status: OrderStatus) -> Order:
    order = db.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    order.status = status
    db.commit()
    db.refresh(order)
    log.info("order_status_updated", order_id=order_id, status=status.value)
    return order
