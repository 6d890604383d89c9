from decimal import Decimal

from sqlalchemy.orm import Session, joinedload

from marketplace.catalog import get_product
from marketplace.errors import Forbidden, InsufficientStock, InvalidInput, InvalidState, NotFound
from marketplace.models import CartItem, Product, ProductStatus
from marketplace.money import line_total, quantize


def check_purchasable(product: Product, user_id: str, quantity: int):
    if product.status != ProductStatus.AVAILABLE:
        raise InvalidState(f"Product '{product.title}' is not available")
    if product.seller_id == user_id:
        raise InvalidState("You cannot buy your own product")
    if product.stock is not None and quantity > product.stock:
        raise InsufficientStock(product.id, product.title, product.stock)


def _owned_item(db: Session, user_id: str, cart_item_id: str) -> CartItem:
    item = db.get(CartItem, cart_item_id)
    if not item:
        raise NotFound("Cart item not found")
    if item.user_id != user_id:
        raise Forbidden("Cart item belongs to another user")
    return item


def add_item(db: Session, user_id: str, product_id: str, quantity: int):
    """Add ``quantity`` of a product, merging into an existing line.

    Returns ``(item, created)``.
    """
    if quantity <= 0:
        raise InvalidInput("Quantity must be positive", [{"field": "quantity", "message": "must be > 0"}])

    product = get_product(db, product_id)
    existing = db.query(CartItem).filter_by(user_id=user_id, product_id=product_id).first()
    requested = quantity + (existing.quantity if existing else 0)
    check_purchasable(product, user_id, requested)

    if existing:
        existing.quantity = requested
        item, created = existing, False
    else:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        db.add(item)
        created = True

    db.commit()
    db.refresh(item)
    return item, created


def remove_item(db: Session, user_id: str, cart_item_id: str):
    item = _owned_item(db, user_id, cart_item_id)
    db.delete(item)
    db.commit()


def update_quantity(db: Session, user_id: str, cart_item_id: str, quantity: int) -> CartItem:
    if quantity <= 0:
        raise InvalidInput("Quantity must be positive", [{"field": "quantity", "message": "must be > 0"}])

    item = _owned_item(db, user_id, cart_item_id)
    check_purchasable(item.product, user_id, quantity)
    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def list_with_total(db: Session, user_id: str):
    items = (
        db.query(CartItem)
        .options(joinedload(CartItem.product))
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.created_at)
        .all()
    )
    total = sum((line_total(i.product.price, i.quantity) for i in items), Decimal("0"))
    return items, quantize(total)
