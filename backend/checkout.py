"""
Checkout flow: Shipping -> Payment -> Confirmation.

``CheckoutFlow`` owns the draft form for one session. Every edit is written to
the local store under ``checkout_form_data`` and the draft is read back when
the flow is opened. Leaving the shipping step requires the required fields,
a Bangladeshi mobile number, a full address and (when given) a valid email.
Placing the order needs accepted terms and a non-empty cart.
"""
from __future__ import annotations
import logging
import re
import time
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, ValidationError

from schemas import CartItem, CheckoutFormData, Order
from sheets import OrderSink
from storage import (
    CHECKOUT_STORAGE_KEY,
    ORDERS_KEY,
    Storage,
    load_json,
    order_key,
    save_json,
)
from store import RemoveCoupon, RemoveFromCart, Store, save_session

logger = logging.getLogger(__name__)

# Bangladesh has no DST
DHAKA_TZ = timezone(timedelta(hours=6), "Asia/Dhaka")

INSIDE_DHAKA = "inside-dhaka"

CONTACT_ERROR = (
    "Please enter a valid Bangladesh mobile number "
    "(e.g., +880 1XXX-XXXXXX, 01XXX-XXXXXX, or 1XXX-XXXXXX)"
)
EMAIL_ERROR = "Please enter a valid email address"
ADDRESS_ERROR = "Please fill in all required address fields (District, Town/City, and Street/Village)"

REQUIRED_FIELDS = {
    "name": "Full name",
    "contact": "Contact number",
}
ADDRESS_FIELDS = ("district", "town", "postcode", "street")

_SUBSCRIBER_RE = re.compile(r"^(1[3-9]\d{8}|7\d{8}|8\d{8}|9\d{8})$")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class Step(IntEnum):
    SHIPPING = 0
    PAYMENT = 1
    CONFIRMATION = 2


class SubmissionBlocked(Exception):
    """Submit was requested while the place-order control is disabled."""


class OrderSubmissionError(Exception):
    """The order sink rejected the order or could not be reached."""


# Validation

def validate_bangladesh_mobile(contact: str) -> bool:
    cleaned = re.sub(r"[\s\-()]", "", contact or "")
    if cleaned.startswith("+880") and len(cleaned) == 14:
        return bool(_SUBSCRIBER_RE.match(cleaned[4:]))
    if cleaned.startswith("880") and len(cleaned) == 13:
        return bool(_SUBSCRIBER_RE.match(cleaned[3:]))
    if cleaned.startswith("01") and len(cleaned) == 11:
        return bool(re.match(r"^01[3-9]\d{8}$", cleaned))
    return len(cleaned) == 10 and bool(re.match(r"^1[3-9]\d{8}$", cleaned))


def validate_email(email: Optional[str]) -> bool:
    if not email:
        return True
    return bool(_EMAIL_RE.match(email))


def validate_address_components(district: str, town: str, street: str) -> bool:
    return all(len((part or "").strip()) >= 2 for part in (district, town, street))


def compose_address(form: CheckoutFormData) -> str:
    parts = [form.street, form.town, form.district, form.postcode]
    return ", ".join(p for p in parts if p)


def missing_required(form: CheckoutFormData) -> Optional[str]:
    for field in REQUIRED_FIELDS:
        if getattr(form, field) == "":
            return field
    return None


# Pricing

class Pricing(BaseModel):
    subtotal: float
    discount_amount: float
    courier_cost: int
    total: float


def courier_fee(tier: str) -> int:
    return 60 if tier == INSIDE_DHAKA else 120


def compute_pricing(items: Iterable[CartItem], discount_percentage: float, courier_tier: str) -> Pricing:
    subtotal = sum(item.effective_price * item.quantity for item in items)
    discount_amount = subtotal * (discount_percentage or 0)
    fee = courier_fee(courier_tier)
    return Pricing(
        subtotal=subtotal,
        discount_amount=discount_amount,
        courier_cost=fee,
        total=subtotal - discount_amount + fee,
    )


def format_order_date(moment: datetime) -> str:
    return moment.astimezone(DHAKA_TZ).strftime("%m/%d/%Y, %I:%M:%S %p")


def confirmation_path(order_id: str) -> str:
    return f"/order-confirmation?orderId={order_id}"


class CheckoutFlow:
    def __init__(self, store: Store, local: Storage, session: Storage, sink: OrderSink,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.local = local
        self.session = session
        self.sink = sink
        self.clock = clock
        self.step = Step.SHIPPING
        self.form = CheckoutFormData()
        self.errors: dict[str, str] = {}
        self.message: Optional[str] = None
        self.terms_accepted = False
        self.is_submitting = False

    @classmethod
    async def open(cls, store: Store, local: Storage, session: Storage, sink: OrderSink,
                   clock: Callable[[], float] = time.time) -> "CheckoutFlow":
        flow = cls(store, local, session, sink, clock)
        await flow.hydrate()
        return flow

    async def hydrate(self) -> None:
        saved = await load_json(self.local, CHECKOUT_STORAGE_KEY)
        if saved is None:
            return
        try:
            self.form = CheckoutFormData.model_validate(saved)
        except ValidationError:
            logger.error("Error parsing saved checkout data, starting with an empty form")
            self.form = CheckoutFormData()

    async def persist(self) -> None:
        await save_json(self.local, CHECKOUT_STORAGE_KEY, self.form.model_dump())

    # Editing

    def _check_live(self, name: str, value: str) -> None:
        if name == "contact":
            if value != "" and not validate_bangladesh_mobile(value):
                self.errors["contact"] = CONTACT_ERROR
            else:
                self.errors.pop("contact", None)
        elif name == "email":
            if value != "" and not validate_email(value):
                self.errors["email"] = EMAIL_ERROR
            else:
                self.errors.pop("email", None)

    async def update(self, fields: dict[str, str]) -> CheckoutFormData:
        data = self.form.model_dump()
        changed = {name: value for name, value in fields.items() if name in data and name != "address"}
        data.update(changed)
        form = CheckoutFormData.model_validate(data)
        for name, value in changed.items():
            self._check_live(name, value)
        if any(name in ADDRESS_FIELDS for name in fields):
            form = form.model_copy(update={"address": compose_address(form)})
        self.form = form
        await self.persist()
        return form

    async def update_field(self, name: str, value: str) -> CheckoutFormData:
        return await self.update({name: value})

    # Navigation

    def validate_shipping(self) -> Optional[str]:
        """Return the first failing message for the shipping step, if any."""
        form = self.form
        missing = missing_required(form)
        if missing:
            return f"{REQUIRED_FIELDS[missing]} is required"
        if not validate_bangladesh_mobile(form.contact):
            self.errors["contact"] = CONTACT_ERROR
            return CONTACT_ERROR
        if not validate_address_components(form.district, form.town, form.street):
            return ADDRESS_ERROR
        if form.email and not validate_email(form.email):
            self.errors["email"] = EMAIL_ERROR
            return EMAIL_ERROR
        return None

    def next(self) -> bool:
        if self.step == Step.SHIPPING:
            self.message = self.validate_shipping()
            if self.message:
                return False
        if self.step >= Step.CONFIRMATION:
            return False
        self.message = None
        self.step = Step(self.step + 1)
        return True

    def back(self) -> bool:
        if self.step == Step.SHIPPING:
            return False
        self.step = Step(self.step - 1)
        return True

    def accept_terms(self, accepted: bool = True) -> None:
        self.terms_accepted = accepted

    # Ordering

    @property
    def pricing(self) -> Pricing:
        state = self.store.state
        return compute_pricing(state.cart_items, state.discount_percentage, self.form.courier_cost)

    @property
    def blocked_reason(self) -> Optional[str]:
        if self.step != Step.CONFIRMATION:
            return "Order can only be placed from the confirmation step"
        if self.is_submitting:
            return "An order is already being placed"
        if not self.store.state.cart_items:
            return "Your cart is empty"
        if not self.terms_accepted:
            return "Please accept the Terms & Conditions to proceed."
        return None

    @property
    def can_submit(self) -> bool:
        return self.blocked_reason is None

    def build_order(self) -> Order:
        state = self.store.state
        pricing = self.pricing
        return Order(
            order_id=f"ORD-{int(self.clock() * 1000)}",
            customer=self.form,
            items=list(state.cart_items),
            subtotal=pricing.subtotal,
            discount_amount=pricing.discount_amount,
            coupon_code=state.coupon_code,
            courier_cost=pricing.courier_cost,
            total=pricing.total,
            date=format_order_date(datetime.fromtimestamp(self.clock(), timezone.utc)),
        )

    async def submit(self) -> Order:
        reason = self.blocked_reason
        if reason:
            raise SubmissionBlocked(reason)

        self.is_submitting = True
        try:
            order = self.build_order()
            try:
                result = await self.sink.submit(order)
            except Exception as e:
                logger.exception("Order %s could not be sent", order.order_id)
                raise OrderSubmissionError(f"An error occurred: {e}. Please try again.") from e
            if not result.success:
                raise OrderSubmissionError(
                    f"Order failed: {result.error or 'Unknown error'}. Please contact support."
                )
            await self._complete(order)
            return order
        finally:
            self.is_submitting = False

    async def _complete(self, order: Order) -> None:
        record = order.model_dump(mode="json")
        await save_json(self.session, order_key(order.order_id), record)
        orders = await load_json(self.local, ORDERS_KEY, [])
        if not isinstance(orders, list):
            orders = []
        orders.append(record)
        await save_json(self.local, ORDERS_KEY, orders)

        for item in order.items:
            self.store.dispatch(RemoveFromCart(id=item.id, selected_options=item.selected_options))
        self.store.dispatch(RemoveCoupon())
        await save_session(self.session, self.store.state)

        await self.local.remove(CHECKOUT_STORAGE_KEY)
        self.form = CheckoutFormData()
        self.errors = {}
        self.terms_accepted = False
        logger.info("Order %s placed, total %.2f", order.order_id, order.total)


async def find_order(order_id: str, session: Storage, local: Storage) -> Optional[Order]:
    """Look an order up in the session first, then in the local history."""
    record = await load_json(session, order_key(order_id))
    if record is None:
        orders = await load_json(local, ORDERS_KEY, [])
        record = next(
            (o for o in orders if isinstance(o, dict) and o.get("order_id") == order_id),
            None,
        ) if isinstance(orders, list) else None
    if record is None:
        return None
    try:
        return Order.model_validate(record)
    except ValidationError:
        logger.error("Stored order %s is unreadable", order_id)
        return None
