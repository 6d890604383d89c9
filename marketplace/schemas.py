from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from marketplace.models import OrderStatus, ProductStatus


class RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AddCartItemRequest(RequestModel):
    product_id: str = Field(alias="productId")
    quantity: int = Field(gt=0)


class RemoveCartItemRequest(RequestModel):
    cart_item_id: str = Field(alias="cartItemId")


class UpdateCartItemRequest(RequestModel):
    cart_item_id: str = Field(alias="cartItemId")
    quantity: int = Field(gt=0)


class CheckoutSessionRequest(RequestModel):
    order_id: str = Field(alias="orderId")


class UpdateOrderStatusRequest(RequestModel):
    status: OrderStatus


class CreateProductRequest(RequestModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    category: Optional[str] = None
    price: Decimal = Field(ge=0, decimal_places=2)
    stock: Optional[int] = Field(default=None, ge=0)
    status: ProductStatus = ProductStatus.AVAILABLE
