from __future__ import annotations
import logging
import os
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from typing import Any, Optional

import catalog
from cache import ProductCache, ProductFetchError
from checkout import CheckoutFlow, OrderSubmissionError, Pricing, SubmissionBlocked, confirmation_path, find_order
from database import database_configured, get_documents, settings
from rows import parse_products
from schemas import CheckoutFormData, Order, OrderResult, Product
from sessions import SessionRegistry, memory_storage_factory, mongo_storage_factory
from sheets import HttpOrderSink, OrderSink, SheetOrderSink, SheetsClient
from store import AppState, CouponPolicy, CouponRules, cart_count, cart_subtotal, parse_action, save_session

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="Storefront API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sheets_client = SheetsClient(settings)


async def load_products() -> list[Product]:
    return parse_products(await sheets_client.fetch_rows())


product_cache = ProductCache(load_products, ttl=settings.PRODUCT_CACHE_TTL)
coupon_rules = CouponRules(policy=CouponPolicy(settings.COUPON_POLICY))
sheet_sink = SheetOrderSink(sheets_client)
checkout_sink: OrderSink = HttpOrderSink(settings.ORDERS_ENDPOINT) if settings.ORDERS_ENDPOINT else sheet_sink
sessions = SessionRegistry(
    mongo_storage_factory() if database_configured() else memory_storage_factory(),
    checkout_sink,
    coupon_rules,
    max_sessions=settings.MAX_SESSIONS,
)

# Dependencies (overridden in tests)

def get_product_cache() -> ProductCache:
    return product_cache

def get_order_sink() -> OrderSink:
    return sheet_sink

def get_sessions() -> SessionRegistry:
    return sessions

async def get_products_or_500(cache: ProductCache = Depends(get_product_cache)) -> list[Product]:
    try:
        return await cache.get_products()
    except ProductFetchError:
        raise HTTPException(status_code=500, detail="Failed to fetch products")


@app.get("/")
async def root():
    return {"message": "Storefront Backend Running"}

@app.get("/test")
async def test():
    return {
        "backend": "✅ Running",
        "sheet_id": "✅ Set" if settings.SHEET_ID else "❌ Not Set",
        "service_account": "✅ Set" if settings.GOOGLE_CLIENT_EMAIL and settings.GOOGLE_PRIVATE_KEY else "❌ Not Set",
        "database_url": "✅ Set" if settings.DATABASE_URL else "❌ Not Set",
        "products_cached": product_cache.is_fresh,
    }

# Products

@app.get("/api/products")
async def get_products(
    id: Optional[int] = Query(None),
    category: Optional[str] = Query(None),
    subcategory: Optional[str] = Query(None),
    tag: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    products: list[Product] = Depends(get_products_or_500),
):
    if action == "categories":
        return catalog.list_categories(products)
    if action == "subcategories":
        if not category:
            raise HTTPException(status_code=400, detail="category is required")
        return catalog.list_subcategories(products, category)
    if action == "categories-with-subcategories":
        return catalog.categories_with_subcategories(products)
    if action is not None:
        raise HTTPException(status_code=400, detail=f"Unknown action {action}")

    if id is not None:
        product = catalog.find_by_id(products, id)
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        return product
    if category and subcategory:
        return catalog.filter_by_subcategory(products, category, subcategory)
    if category:
        return catalog.filter_by_category(products, category)
    if tag:
        return catalog.filter_by_tag(products, tag)
    return products

@app.get("/api/products/slug/{slug}")
async def product_by_slug(slug: str, products: list[Product] = Depends(get_products_or_500)):
    product_id = catalog.parse_product_id_from_slug(slug)
    product = catalog.find_by_id(products, product_id) if product_id is not None else None
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": product, "related": catalog.related_products(products, product)}

class SearchOut(BaseModel):
    query: str
    results: list[Product]
    total: int

@app.get("/api/search", response_model=SearchOut)
async def search(
    q: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    products: list[Product] = Depends(get_products_or_500),
):
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail='Query parameter "q" is required')
    results, total = catalog.search(products, q, limit)
    return SearchOut(query=q.strip().lower(), results=results, total=total)

# Coupons

class CouponIn(BaseModel):
    code: str

class CouponOut(BaseModel):
    valid: bool
    percent: float = 0

@app.post("/api/coupon", response_model=CouponOut)
async def check_coupon(payload: CouponIn):
    if coupon_rules.matches(payload.code):
        return CouponOut(valid=True, percent=coupon_rules.percentage)
    return CouponOut(valid=False, percent=0)

# Orders

@app.post("/api/orders", response_model=OrderResult, response_model_exclude_none=True)
async def create_order(order: Order, sink: OrderSink = Depends(get_order_sink)):
    result = await sink.submit(order)
    if not result.success:
        return JSONResponse(status_code=500, content=result.model_dump(by_alias=True, exclude_none=True))
    return result

@app.get("/api/orders")
async def list_orders(limit: int = 50):
    if not database_configured():
        return []
    docs = await get_documents("order", {}, limit=limit)
    for d in docs:
        d.pop("created_at", None)
        d.pop("updated_at", None)
    return docs

# Session: cart / wishlist / coupon

class SessionStateOut(BaseModel):
    state: AppState
    cart_count: int
    subtotal: float

def state_out(flow: CheckoutFlow) -> SessionStateOut:
    state = flow.store.state
    return SessionStateOut(state=state, cart_count=cart_count(state), subtotal=cart_subtotal(state))

@app.get("/api/session/{sid}/state", response_model=SessionStateOut)
async def session_state(sid: str, registry: SessionRegistry = Depends(get_sessions)):
    return state_out(await registry.get(sid))

@app.post("/api/session/{sid}/actions", response_model=SessionStateOut)
async def dispatch_action(sid: str, payload: dict[str, Any], registry: SessionRegistry = Depends(get_sessions)):
    try:
        action = parse_action(payload)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    flow = await registry.get(sid)
    flow.store.dispatch(action)
    await save_session(flow.session, flow.store.state)
    return state_out(flow)

@app.delete("/api/session/{sid}")
async def end_session(sid: str, registry: SessionRegistry = Depends(get_sessions)):
    registry.drop(sid)
    return {"status": "ended"}

# Session: checkout

class CheckoutOut(BaseModel):
    step: int
    form: CheckoutFormData
    errors: dict[str, str]
    message: Optional[str] = None
    terms_accepted: bool
    can_submit: bool
    pricing: Pricing

def checkout_out(flow: CheckoutFlow) -> CheckoutOut:
    return CheckoutOut(
        step=int(flow.step),
        form=flow.form,
        errors=flow.errors,
        message=flow.message,
        terms_accepted=flow.terms_accepted,
        can_submit=flow.can_submit,
        pricing=flow.pricing,
    )

@app.get("/api/session/{sid}/checkout", response_model=CheckoutOut)
async def get_checkout(sid: str, registry: SessionRegistry = Depends(get_sessions)):
    return checkout_out(await registry.get(sid))

@app.put("/api/session/{sid}/checkout", response_model=CheckoutOut)
async def update_checkout(sid: str, fields: dict[str, str], registry: SessionRegistry = Depends(get_sessions)):
    flow = await registry.get(sid)
    try:
        await flow.update(fields)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))
    return checkout_out(flow)

@app.post("/api/session/{sid}/checkout/next", response_model=CheckoutOut)
async def checkout_next(sid: str, registry: SessionRegistry = Depends(get_sessions)):
    flow = await registry.get(sid)
    flow.next()
    return checkout_out(flow)

@app.post("/api/session/{sid}/checkout/back", response_model=CheckoutOut)
async def checkout_back(sid: str, registry: SessionRegistry = Depends(get_sessions)):
    flow = await registry.get(sid)
    flow.back()
    return checkout_out(flow)

class TermsIn(BaseModel):
    accepted: bool = True

@app.post("/api/session/{sid}/checkout/terms", response_model=CheckoutOut)
async def checkout_terms(sid: str, payload: TermsIn, registry: SessionRegistry = Depends(get_sessions)):
    flow = await registry.get(sid)
    flow.accept_terms(payload.accepted)
    return checkout_out(flow)

class SubmitOut(BaseModel):
    order: Order
    redirect: str

@app.post("/api/session/{sid}/checkout/submit", response_model=SubmitOut)
async def checkout_submit(sid: str, registry: SessionRegistry = Depends(get_sessions)):
    flow = await registry.get(sid)
    try:
        order = await flow.submit()
    except SubmissionBlocked as e:
        raise HTTPException(status_code=409, detail=str(e))
    except OrderSubmissionError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return SubmitOut(order=order, redirect=confirmation_path(order.order_id))

@app.get("/api/session/{sid}/orders/{order_id}", response_model=Order)
async def get_session_order(sid: str, order_id: str, registry: SessionRegistry = Depends(get_sessions)):
    order = await find_order(order_id, registry.session_storage(sid), registry.local_storage(sid))
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", 8000)))
