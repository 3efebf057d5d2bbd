"""
Cart / wishlist / coupon state.

``app_reducer`` is the only way this state changes: it takes a frozen
``AppState`` and an action and returns the next ``AppState``. ``Store`` holds
the current state for one shopping session and applies dispatched actions in
order. Persisting a session is done by the caller with ``save_session`` after
dispatching, which keeps the reducer free of I/O.
"""
from __future__ import annotations
import logging
from enum import Enum
from typing import Annotated, Callable, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from schemas import CartItem, Product, SelectedOptions, WishlistItem, options_key
from storage import CART_ITEMS_KEY, COUPON_CODE_KEY, WISHLIST_ITEMS_KEY, Storage

logger = logging.getLogger(__name__)


class CouponPolicy(str, Enum):
    # unknown code wipes any applied coupon
    CLEAR_ON_MISMATCH = "clear"
    # unknown code is ignored, the applied coupon stays
    KEEP_PREVIOUS = "keep"


class CouponRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str = "FIRST20"
    percentage: float = 0.20
    policy: CouponPolicy = CouponPolicy.CLEAR_ON_MISMATCH

    def matches(self, code: str) -> bool:
        return code.strip().upper() == self.code.upper()


DEFAULT_RULES = CouponRules()


class LastAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    product: Optional[Product] = None


class AppState(BaseModel):
    model_config = ConfigDict(frozen=True)

    cart_items: list[CartItem] = Field(default_factory=list)
    wishlist_items: list[WishlistItem] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    discount_percentage: float = 0
    is_cart_open: bool = False
    is_wishlist_open: bool = False
    is_quick_view_open: bool = False
    quick_view_product: Optional[Product] = None
    last_action: Optional[LastAction] = None


# Actions

class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)


class AddToCart(_Action):
    type: Literal["ADD_TO_CART"] = "ADD_TO_CART"
    product: Product
    selected_options: Optional[SelectedOptions] = None


class AddToCartWithQuantity(_Action):
    type: Literal["ADD_TO_CART_WITH_QUANTITY"] = "ADD_TO_CART_WITH_QUANTITY"
    product: Product
    quantity: int = Field(ge=1)
    selected_options: Optional[SelectedOptions] = None


class RemoveFromCart(_Action):
    type: Literal["REMOVE_FROM_CART"] = "REMOVE_FROM_CART"
    id: int
    selected_options: Optional[SelectedOptions] = None


class UpdateQuantity(_Action):
    type: Literal["UPDATE_QUANTITY"] = "UPDATE_QUANTITY"
    id: int
    quantity: int
    selected_options: Optional[SelectedOptions] = None


class AddToWishlist(_Action):
    type: Literal["ADD_TO_WISHLIST"] = "ADD_TO_WISHLIST"
    product: Product
    selected_options: Optional[SelectedOptions] = None


class RemoveFromWishlist(_Action):
    type: Literal["REMOVE_FROM_WISHLIST"] = "REMOVE_FROM_WISHLIST"
    id: int


class ApplyCoupon(_Action):
    type: Literal["APPLY_COUPON"] = "APPLY_COUPON"
    coupon_code: str


class RemoveCoupon(_Action):
    type: Literal["REMOVE_COUPON"] = "REMOVE_COUPON"


class ClearCart(_Action):
    type: Literal["CLEAR_CART"] = "CLEAR_CART"


class ToggleCart(_Action):
    type: Literal["TOGGLE_CART"] = "TOGGLE_CART"
    is_open: Optional[bool] = None


class ToggleWishlist(_Action):
    type: Literal["TOGGLE_WISHLIST"] = "TOGGLE_WISHLIST"
    is_open: Optional[bool] = None


class OpenQuickView(_Action):
    type: Literal["OPEN_QUICK_VIEW"] = "OPEN_QUICK_VIEW"
    product: Product


class CloseQuickView(_Action):
    type: Literal["CLOSE_QUICK_VIEW"] = "CLOSE_QUICK_VIEW"


class SetLastAction(_Action):
    type: Literal["SET_LAST_ACTION"] = "SET_LAST_ACTION"
    action: Optional[LastAction] = None


Action = Annotated[
    Union[
        AddToCart, AddToCartWithQuantity, RemoveFromCart, UpdateQuantity,
        AddToWishlist, RemoveFromWishlist, ApplyCoupon, RemoveCoupon, ClearCart,
        ToggleCart, ToggleWishlist, OpenQuickView, CloseQuickView, SetLastAction,
    ],
    Field(discriminator="type"),
]

action_adapter: TypeAdapter[Action] = TypeAdapter(Action)


def parse_action(data: dict) -> Action:
    return action_adapter.validate_python(data)


# Reducer

def _same_line(item: WishlistItem, product_id: int, options: Optional[SelectedOptions]) -> bool:
    return item.composite_key() == (product_id, options_key(options))


def _add_to_cart(state: AppState, product: Product, quantity: int,
                 options: Optional[SelectedOptions], action_type: str) -> AppState:
    existing = any(_same_line(i, product.id, options) for i in state.cart_items)
    if existing:
        items = [
            i.model_copy(update={"quantity": i.quantity + quantity})
            if _same_line(i, product.id, options) else i
            for i in state.cart_items
        ]
    else:
        line = CartItem.model_validate({
            **product.model_dump(),
            "quantity": quantity,
            "selected_options": options,
        })
        items = [*state.cart_items, line]
    return state.model_copy(update={
        "cart_items": items,
        "last_action": LastAction(type=action_type, product=product),
    })


def _remove_from_cart(state: AppState, product_id: int, options: Optional[SelectedOptions]) -> AppState:
    if options is None:
        items = [i for i in state.cart_items if i.id != product_id]
    else:
        items = [i for i in state.cart_items if not _same_line(i, product_id, options)]
    return state.model_copy(update={"cart_items": items})


def _update_quantity(state: AppState, action: UpdateQuantity) -> AppState:
    if action.quantity <= 0:
        return _remove_from_cart(state, action.id, action.selected_options)

    def target(item: CartItem) -> bool:
        if action.selected_options is None:
            return item.id == action.id
        return _same_line(item, action.id, action.selected_options)

    items = [
        i.model_copy(update={"quantity": action.quantity}) if target(i) else i
        for i in state.cart_items
    ]
    return state.model_copy(update={"cart_items": items})


def _add_to_wishlist(state: AppState, action: AddToWishlist) -> AppState:
    if any(_same_line(i, action.product.id, action.selected_options) for i in state.wishlist_items):
        return state
    entry = WishlistItem.model_validate({
        **action.product.model_dump(),
        "selected_options": action.selected_options,
    })
    return state.model_copy(update={
        "wishlist_items": [*state.wishlist_items, entry],
        "last_action": LastAction(type=action.type, product=action.product),
    })


def _apply_coupon(state: AppState, code: str, rules: CouponRules) -> AppState:
    if rules.matches(code):
        return state.model_copy(update={
            "coupon_code": code.strip().upper(),
            "discount_percentage": rules.percentage,
        })
    if rules.policy == CouponPolicy.KEEP_PREVIOUS:
        return state
    return state.model_copy(update={"coupon_code": None, "discount_percentage": 0})


def app_reducer(state: AppState, action: Action, rules: CouponRules = DEFAULT_RULES) -> AppState:
    if isinstance(action, AddToCart):
        return _add_to_cart(state, action.product, 1, action.selected_options, action.type)
    if isinstance(action, AddToCartWithQuantity):
        return _add_to_cart(state, action.product, action.quantity, action.selected_options, action.type)
    if isinstance(action, RemoveFromCart):
        return _remove_from_cart(state, action.id, action.selected_options)
    if isinstance(action, UpdateQuantity):
        return _update_quantity(state, action)
    if isinstance(action, AddToWishlist):
        return _add_to_wishlist(state, action)
    if isinstance(action, RemoveFromWishlist):
        # by id only, unlike the cart
        return state.model_copy(update={
            "wishlist_items": [i for i in state.wishlist_items if i.id != action.id],
        })
    if isinstance(action, ApplyCoupon):
        return _apply_coupon(state, action.coupon_code, rules)
    if isinstance(action, RemoveCoupon):
        return state.model_copy(update={"coupon_code": None, "discount_percentage": 0})
    if isinstance(action, ClearCart):
        return state.model_copy(update={"cart_items": []})
    if isinstance(action, ToggleCart):
        is_open = action.is_open if action.is_open is not None else not state.is_cart_open
        return state.model_copy(update={"is_cart_open": is_open})
    if isinstance(action, ToggleWishlist):
        is_open = action.is_open if action.is_open is not None else not state.is_wishlist_open
        return state.model_copy(update={"is_wishlist_open": is_open})
    if isinstance(action, OpenQuickView):
        return state.model_copy(update={"is_quick_view_open": True, "quick_view_product": action.product})
    if isinstance(action, CloseQuickView):
        return state.model_copy(update={"is_quick_view_open": False, "quick_view_product": None})
    if isinstance(action, SetLastAction):
        return state.model_copy(update={"last_action": action.action})
    return state


# Selectors

def cart_count(state: AppState) -> int:
    return sum(i.quantity for i in state.cart_items)


def cart_subtotal(state: AppState) -> float:
    return sum(i.effective_price * i.quantity for i in state.cart_items)


Listener = Callable[[AppState, Action], None]


class Store:
    def __init__(self, state: Optional[AppState] = None, rules: CouponRules = DEFAULT_RULES):
        self.state = state or AppState()
        self.rules = rules
        self._listeners: list[Listener] = []

    def dispatch(self, action: Action) -> AppState:
        self.state = app_reducer(self.state, action, self.rules)
        for listener in list(self._listeners):
            listener(self.state, action)
        return self.state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe


# Session persistence

_cart_adapter = TypeAdapter(list[CartItem])
_wishlist_adapter = TypeAdapter(list[WishlistItem])


async def save_session(storage: Storage, state: AppState) -> None:
    await storage.set(CART_ITEMS_KEY, _cart_adapter.dump_json(state.cart_items).decode())
    await storage.set(WISHLIST_ITEMS_KEY, _wishlist_adapter.dump_json(state.wishlist_items).decode())
    if state.coupon_code:
        await storage.set(COUPON_CODE_KEY, state.coupon_code)
    else:
        await storage.remove(COUPON_CODE_KEY)


async def _load_list(storage: Storage, key: str, adapter: TypeAdapter) -> list:
    raw = await storage.get(key)
    if not raw:
        return []
    try:
        return adapter.validate_json(raw)
    except ValidationError:
        logger.warning("Ignoring unreadable session value for %s", key)
        return []


async def load_session(storage: Storage, rules: CouponRules = DEFAULT_RULES) -> Store:
    """Rebuild a session store from the session-scoped keys."""
    store = Store(AppState(
        cart_items=await _load_list(storage, CART_ITEMS_KEY, _cart_adapter),
        wishlist_items=await _load_list(storage, WISHLIST_ITEMS_KEY, _wishlist_adapter),
    ), rules=rules)
    code = await storage.get(COUPON_CODE_KEY)
    if code:
        store.dispatch(ApplyCoupon(coupon_code=code))
    return store
