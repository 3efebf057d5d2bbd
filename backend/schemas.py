from __future__ import annotations
import re
from pydantic import BaseModel, ConfigDict, Field, computed_field
from typing import Literal, Optional

# Catalog rows come from the product sheet; everything else lives in the
# session / order stores.

CourierTier = Literal["inside-dhaka", "outside-dhaka"]


class CommentRating(BaseModel):
    model_config = ConfigDict(frozen=True)

    comment: str
    rating: float = 0


class Product(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    price: float = Field(ge=0, default=0)
    description: str = ""
    images: list[str] = Field(default_factory=list)
    rating: float = Field(ge=0, le=5, default=0)
    category: str = ""
    subcategory: Optional[str] = None
    subtitle: Optional[str] = None
    discount_amount: Optional[float] = None
    sizes: Optional[list[str]] = None
    colors: Optional[list[str]] = None
    videos: Optional[list[str]] = None
    items_left: Optional[int] = None
    comments_and_ratings: Optional[list[CommentRating]] = None
    tags: Optional[list[str]] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def price_after_discount(self) -> Optional[float]:
        if not self.discount_amount or self.discount_amount <= 0:
            return None
        return round(max(0.0, self.price - self.discount_amount), 2)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def save_percentage(self) -> Optional[int]:
        if self.price_after_discount is None or self.price <= 0:
            return None
        return round((self.price - self.price_after_discount) / self.price * 100)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def slug(self) -> str:
        base = re.sub(r"\s+", "-", self.name.lower())
        base = re.sub(r"[^\w-]", "", base)
        return f"{base}-{self.id}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def in_stock(self) -> bool:
        return self.items_left is None or self.items_left > 0


class SelectedOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    size: Optional[str] = None
    color: Optional[str] = None

    def key(self) -> str:
        return f"{self.size or 'default'}-{self.color or 'default'}"


def options_key(options: Optional[SelectedOptions]) -> str:
    return (options or SelectedOptions()).key()


class WishlistItem(Product):
    selected_options: Optional[SelectedOptions] = None

    def composite_key(self) -> tuple[int, str]:
        return self.id, options_key(self.selected_options)


class CartItem(WishlistItem):
    quantity: int = Field(ge=1, default=1)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def effective_price(self) -> float:
        after = self.price_after_discount
        if after is not None and after > 0:
            return after
        return self.price


class CheckoutFormData(BaseModel):
    name: str = ""
    email: Optional[str] = ""
    contact: str = ""
    address: str = ""
    district: str = ""
    town: str = ""
    postcode: str = ""
    street: str = ""
    delivery_method: str = "cash-on-delivery"
    courier_cost: CourierTier = "inside-dhaka"


class Order(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    customer: CheckoutFormData
    items: list[CartItem]
    subtotal: float = Field(ge=0)
    discount_amount: float = Field(ge=0, default=0)
    coupon_code: Optional[str] = None
    courier_cost: float = Field(ge=0)
    total: float
    date: str


class OrderResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    order_id: Optional[str] = Field(default=None, alias="orderId")
    message: Optional[str] = None
    error: Optional[str] = None
