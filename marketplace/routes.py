from decimal import Decimal

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from marketplace import cart, catalog, checkout, orders
from marketplace.auth import Principal, get_current_user, require_admin
from marketplace.database import get_db
from marketplace.models import CartItem, Order, Product
from marketplace.money import format_amount
from marketplace.pagination import pagination_meta, pagination_params
from marketplace.schemas import (
    AddCartItemRequest,
    CheckoutSessionRequest,
    CreateProductRequest,
    RemoveCartItemRequest,
    UpdateCartItemRequest,
    UpdateOrderStatusRequest,
)

product_router = APIRouter(prefix="/api/product", tags=["product"])
cart_router = APIRouter(prefix="/api/cart", tags=["cart"])
order_router = APIRouter(prefix="/api/order", tags=["order"])
payment_router = APIRouter(prefix="/api/payment", tags=["payment"])


def _isoformat(value):
    return value.isoformat() if value else None


def serialize_product(product: Product) -> dict:
    return {
        "id": product.id,
        "title": product.title,
        "description": product.description,
        "category": product.category,
        "price": format_amount(product.price),
        "stock": product.stock,
        "status": product.status.value,
        "sellerId": product.seller_id,
    }


def serialize_cart_item(item: CartItem) -> dict:
    return {
        "id": item.id,
        "productId": item.product_id,
        "quantity": item.quantity,
        "product": {
            "id": item.product.id,
            "title": item.product.title,
            "description": item.product.description,
            "price": format_amount(item.product.price),
        },
    }


def serialize_order(order: Order) -> dict:
    return {
        "orderId": order.id,
        "userId": order.user_id,
        "status": order.status.value,
        "paymentStatus": order.payment_status.value,
        "totalAmount": format_amount(order.total_amount),
        "stripeSessionId": order.stripe_session_id,
        "paidAt": _isoformat(order.paid_at),
        "createdAt": _isoformat(order.created_at),
        "items": [
            {
                "productId": item.product_id,
                "productName": item.product_name,
                "quantity": item.quantity,
                "priceAtPurchase": format_amount(item.price_at_purchase),
            }
            for item in order.items
        ],
    }


# Products

@product_router.get("")
def list_products(
    category: str = None,
    min_price: Decimal = Query(None, alias="minPrice"),
    max_price: Decimal = Query(None, alias="maxPrice"),
    page: int = None,
    limit: int = None,
    db: Session = Depends(get_db),
):
    page, limit = pagination_params(page, limit)
    products, total = catalog.list_products(db, page, limit, category, min_price, max_price)
    return {
        "products": [serialize_product(p) for p in products],
        "pagination": pagination_meta(total, page, limit),
    }


@product_router.get("/{product_id}")
def get_product(product_id: str, db: Session = Depends(get_db)):
    return {"product": serialize_product(catalog.get_product(db, product_id))}


@product_router.post("", status_code=201)
def create_product(
    request: CreateProductRequest,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    product = catalog.create_product(
        db,
        seller_id=admin.user_id,
        title=request.title,
        price=request.price,
        description=request.description,
        category=request.category,
        stock=request.stock,
        status=request.status,
    )
    return {"product": serialize_product(product)}


# Cart

@cart_router.get("")
def list_cart(user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    items, total = cart.list_with_total(db, user.user_id)
    return {"items": [serialize_cart_item(i) for i in items], "totalPrice": format_amount(total)}


@cart_router.post("/add")
def add_to_cart(
    request: AddCartItemRequest,
    response: Response,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item, created = cart.add_item(db, user.user_id, request.product_id, request.quantity)
    response.status_code = 201 if created else 200
    return {"item": serialize_cart_item(item)}


@cart_router.post("/remove")
def remove_from_cart(
    request: RemoveCartItemRequest,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    cart.remove_item(db, user.user_id, request.cart_item_id)
    return {}


@cart_router.post("/update")
def update_cart_item(
    request: UpdateCartItemRequest,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    item = cart.update_quantity(db, user.user_id, request.cart_item_id, request.quantity)
    return {"item": serialize_cart_item(item)}


# Orders

@order_router.get("")
def my_orders(
    page: int = None,
    limit: int = None,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    page, limit = pagination_params(page, limit)
    rows, total = orders.list_orders_for_user(db, user.user_id, page, limit)
    return {"orders": [serialize_order(o) for o in rows], "pagination": pagination_meta(total, page, limit)}


@order_router.get("/get-order")
def get_order(
    order_id: str = Query(..., alias="orderId"),
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"order": serialize_order(orders.get_order_for_user(db, user.user_id, order_id))}


@order_router.post("/create-order", status_code=201)
def create_order(user: Principal = Depends(get_current_user), db: Session = Depends(get_db)):
    return serialize_order(orders.create_order_from_cart(db, user.user_id))


@order_router.get("/list-all-orders")
def list_all_orders(
    page: int = None,
    limit: int = None,
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    page, limit = pagination_params(page, limit)
    rows, total = orders.list_all_orders(db, page, limit)
    return {"orders": [serialize_order(o) for o in rows], "pagination": pagination_meta(total, page, limit)}


@order_router.post("/update/status")
def update_order_status(
    request: UpdateOrderStatusRequest,
    order_id: str = Query(..., alias="orderId"),
    admin: Principal = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return {"order": serialize_order(orders.update_order_status(db, order_id, request.status))}


# Payments

@payment_router.post("/create-checkout-session")
def create_checkout_session(
    request: CheckoutSessionRequest,
    user: Principal = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"sessionId": checkout.create_session(db, user, request.order_id)}
