from decimal import Decimal

from sqlalchemy.orm import Session

from marketplace.errors import InvalidInput, NotFound
from marketplace.models import Product, ProductStatus
from marketplace.money import quantize
from marketplace.pagination import paginate


def get_product(db: Session, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if not product:
        raise NotFound("Product not found")
    return product


def list_products(db: Session, page: int, limit: int, category: str = None,
                  min_price: Decimal = None, max_price: Decimal = None):
    query = db.query(Product).filter(Product.status == ProductStatus.AVAILABLE)
    if category:
        query = query.filter(Product.category == category)
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)
    return paginate(query.order_by(Product.created_at.desc()), page, limit)


def create_product(db: Session, seller_id: str, title: str, price: Decimal,
                   description: str = None, category: str = None, stock: int = None,
                   status: ProductStatus = ProductStatus.AVAILABLE) -> Product:
    if price < 0:
        raise InvalidInput("Price must not be negative")
    if stock is not None and stock < 0:
        raise InvalidInput("Stock must not be negative")

    product = Product(
        seller_id=seller_id,
        title=title,
        description=description,
        category=category,
        price=quantize(price),
        stock=stock,
        status=status,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product
