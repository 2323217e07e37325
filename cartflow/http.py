"""
HTTP surface — FastAPI app over the Storefront facade.

    app = create_app(storefront)        # or create_app() to build from env

Identity comes from headers: X-User-Id for signed-in shoppers, otherwise
X-Session-Id (a fresh one is issued and echoed back when absent).
POST /orders honours an Idempotency-Key header. Status and payment updates
require X-Admin-Token to match settings.admin_token.

The app runs Storefront.run_maintenance in the background while it serves.

Errors render as {"code", "message", "detail"} with a status per code.
"""

from __future__ import annotations

import asyncio
import contextlib
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any

import fastapi
from fastapi import Depends, Header, Request, Response
from fastapi.responses import JSONResponse
from kungfu import Result, Ok, Error
from pydantic import BaseModel, Field

from cartflow._types import Identity
from cartflow.cart import Cart, LineItem
from cartflow.errors import CartflowError
from cartflow.log import configure_logging
from cartflow.orders import Address, Order, OrderStatus, PaymentMethod, PlacementResult
from cartflow.pricing import PricingPolicy, Totals, compute_totals
from cartflow.settings import Settings
from cartflow.storefront import Storefront

STATUS_BY_CODE: dict[str, int] = {
    "INVALID_QUANTITY": 422,
    "INVALID_PROMO_CODE": 422,
    "EMPTY_CART": 422,
    "INVALID_ADDRESS": 422,
    "NOT_FOUND": 404,
    "INSUFFICIENT_STOCK": 409,
    "STOCK_UNAVAILABLE": 409,
    "STOCK_CHANGED": 409,
    "INVALID_TRANSITION": 409,
    "IDEMPOTENCY_CONFLICT": 409,
    "STORAGE_UNAVAILABLE": 503,
    "PLACEMENT_TIMED_OUT": 504,
    "ROLLBACK_INCOMPLETE": 500,
}


class ApiError(Exception):
    def __init__(self, error: CartflowError) -> None:
        super().__init__(str(error))
        self.error = error

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE.get(self.error.code, 400)


def unwrap[T](result: Result[T, CartflowError]) -> T:
    match result:
        case Ok(value):
            return value
        case Error(e):
            raise ApiError(e)


# ═══════════════════════════════════════════════════════════════════════════════
# Wire Models
# ═══════════════════════════════════════════════════════════════════════════════


class TotalsOut(BaseModel):
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping_fee: Decimal
    total: Decimal

    @classmethod
    def from_domain(cls, totals: Totals) -> TotalsOut:
        return cls(
            subtotal=totals.subtotal,
            discount=totals.discount,
            tax=totals.tax,
            shipping_fee=totals.shipping_fee,
            total=totals.total,
        )


class LineItemOut(BaseModel):
    product_id: str
    variant_key: str
    quantity: int
    unit_price: Decimal
    unit_price_original: Decimal
    display_name: str
    image_ref: str | None

    @classmethod
    def from_domain(cls, line: LineItem) -> LineItemOut:
        return cls(
            product_id=line.product_id,
            variant_key=line.variant_key,
            quantity=line.quantity,
            unit_price=line.unit_price,
            unit_price_original=line.unit_price_original,
            display_name=line.display_name,
            image_ref=line.image_ref,
        )


class CartOut(BaseModel):
    owner: str
    items: list[LineItemOut]
    discount_percent: int
    promo_code: str | None
    totals: TotalsOut

    @classmethod
    def from_domain(cls, cart: Cart, pricing: PricingPolicy) -> CartOut:
        return cls(
            owner=cart.owner.key,
            items=[LineItemOut.from_domain(i) for i in cart.items],
            discount_percent=cart.discount_percent,
            promo_code=cart.promo_code,
            totals=TotalsOut.from_domain(
                compute_totals(cart.items, cart.discount_percent, pricing)
            ),
        )


class AddItemIn(BaseModel):
    product_id: str
    variant_key: str
    quantity: int = 1


class QuantityIn(BaseModel):
    quantity: int


class PromoIn(BaseModel):
    code: str


class SignInIn(BaseModel):
    user_id: str


class AddressModel(BaseModel):
    street: str
    city: str
    state: str
    postal_code: str
    country: str = "India"

    def to_domain(self) -> Address:
        return Address(
            street=self.street,
            city=self.city,
            state=self.state,
            postal_code=self.postal_code,
            country=self.country,
        )

    @classmethod
    def from_domain(cls, address: Address) -> AddressModel:
        return cls(
            street=address.street,
            city=address.city,
            state=address.state,
            postal_code=address.postal_code,
            country=address.country,
        )


class PlaceOrderIn(BaseModel):
    shipping_address: AddressModel
    billing_address: AddressModel | None = None
    payment_method: PaymentMethod = PaymentMethod.COD


class PlacementOut(BaseModel):
    order_id: str
    order_number: str
    totals: TotalsOut
    from_cache: bool

    @classmethod
    def from_domain(cls, placed: PlacementResult) -> PlacementOut:
        return cls(
            order_id=placed.order_id,
            order_number=placed.order_number,
            totals=TotalsOut.from_domain(placed.totals),
            from_cache=placed.from_cache,
        )


class StatusChangeOut(BaseModel):
    status: OrderStatus
    at: datetime
    note: str | None


class OrderOut(BaseModel):
    id: str
    order_number: str
    user_id: str
    items: list[LineItemOut]
    shipping_address: AddressModel
    billing_address: AddressModel
    payment_method: PaymentMethod
    totals: TotalsOut
    promo_code: str | None
    is_paid: bool
    status: OrderStatus
    status_history: list[StatusChangeOut]
    cancellation_reason: str | None
    created_at: datetime

    @classmethod
    def from_domain(cls, order: Order) -> OrderOut:
        return cls(
            id=order.id,
            order_number=order.order_number,
            user_id=order.user_id,
            items=[LineItemOut.from_domain(i) for i in order.items],
            shipping_address=AddressModel.from_domain(order.shipping_address),
            billing_address=AddressModel.from_domain(order.billing_address),
            payment_method=order.payment_method,
            totals=TotalsOut.from_domain(order.totals),
            promo_code=order.promo_code,
            is_paid=order.is_paid,
            status=order.status,
            status_history=[
                StatusChangeOut(status=c.status, at=c.at, note=c.note)
                for c in order.status_history
            ],
            cancellation_reason=order.cancellation_reason,
            created_at=order.created_at,
        )


class CancelIn(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class AdvanceIn(BaseModel):
    status: OrderStatus
    note: str | None = None


# ═══════════════════════════════════════════════════════════════════════════════
# Dependencies
# ═══════════════════════════════════════════════════════════════════════════════


def get_storefront(request: Request) -> Storefront:
    return request.app.state.storefront  # type: ignore[no-any-return]


def get_identity(
    response: Response,
    x_user_id: Annotated[str | None, Header()] = None,
    x_session_id: Annotated[str | None, Header()] = None,
) -> Identity:
    if x_user_id:
        return Identity.user(x_user_id)
    identity = Identity.anonymous(x_session_id or None)
    response.headers["X-Session-Id"] = identity.session_id or ""
    return identity


def require_user(x_user_id: Annotated[str | None, Header()] = None) -> str:
    if not x_user_id:
        raise fastapi.HTTPException(status_code=401, detail="X-User-Id header required")
    return x_user_id


def require_admin(
    shop: Annotated[Storefront, Depends(get_storefront)],
    x_admin_token: Annotated[str | None, Header()] = None,
) -> None:
    if not x_admin_token:
        raise fastapi.HTTPException(status_code=401, detail="X-Admin-Token header required")
    expected = shop.settings.admin_token
    if expected is None or not secrets.compare_digest(x_admin_token.encode(), expected.encode()):
        raise fastapi.HTTPException(status_code=403, detail="Admin token rejected")


Shop = Annotated[Storefront, Depends(get_storefront)]
Who = Annotated[Identity, Depends(get_identity)]
UserId = Annotated[str, Depends(require_user)]


# ═══════════════════════════════════════════════════════════════════════════════
# App
# ═══════════════════════════════════════════════════════════════════════════════


def create_app(storefront: Storefront | None = None, settings: Settings | None = None) -> fastapi.FastAPI:
    """
    Build the app.

    Without a storefront one is created from settings (default: environment)
    at startup and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: fastapi.FastAPI) -> AsyncIterator[None]:
        if storefront is not None:
            shop = storefront
        else:
            config = settings or Settings.from_env()
            configure_logging(config.log_level, json=config.log_json)
            shop = await Storefront.from_database(config)
            app.state.storefront = shop

        maintenance = asyncio.create_task(shop.run_maintenance())
        try:
            yield
        finally:
            maintenance.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await maintenance
            if storefront is None:
                await shop.close()

    app = fastapi.FastAPI(title="cartflow", lifespan=lifespan)
    if storefront is not None:
        app.state.storefront = storefront

    @app.exception_handler(ApiError)
    async def api_error(request: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "code": exc.error.code,
                "message": exc.error.message,
                "detail": _jsonable(exc.error.detail()),
            },
        )

    # ── cart ─────────────────────────────────────────────────────────────────

    @app.get("/cart")
    async def get_cart(shop: Shop, who: Who) -> CartOut:
        return CartOut.from_domain(unwrap(await shop.get_cart(who)), shop.pricing)

    @app.post("/cart/items")
    async def add_item(body: AddItemIn, shop: Shop, who: Who) -> CartOut:
        cart = unwrap(await shop.add_to_cart(who, body.product_id, body.variant_key, body.quantity))
        return CartOut.from_domain(cart, shop.pricing)

    @app.patch("/cart/items/{product_id}/{variant_key}")
    async def update_item(
        product_id: str, variant_key: str, body: QuantityIn, shop: Shop, who: Who
    ) -> CartOut:
        cart = unwrap(await shop.update_quantity(who, product_id, variant_key, body.quantity))
        return CartOut.from_domain(cart, shop.pricing)

    @app.delete("/cart/items/{product_id}/{variant_key}")
    async def remove_item(product_id: str, variant_key: str, shop: Shop, who: Who) -> CartOut:
        cart = unwrap(await shop.remove_item(who, product_id, variant_key))
        return CartOut.from_domain(cart, shop.pricing)

    @app.delete("/cart")
    async def clear_cart(shop: Shop, who: Who) -> CartOut:
        return CartOut.from_domain(unwrap(await shop.clear_cart(who)), shop.pricing)

    @app.post("/cart/promo")
    async def apply_promo(body: PromoIn, shop: Shop, who: Who) -> CartOut:
        cart = unwrap(await shop.apply_promo_code(who, body.code))
        return CartOut.from_domain(cart, shop.pricing)

    @app.post("/session/sign-in")
    async def sign_in(
        body: SignInIn,
        shop: Shop,
        x_session_id: Annotated[str, Header()],
    ) -> CartOut:
        cart = unwrap(await shop.sign_in(Identity.anonymous(x_session_id), body.user_id))
        return CartOut.from_domain(cart, shop.pricing)

    # ── orders ───────────────────────────────────────────────────────────────

    @app.post("/orders", status_code=201)
    async def place_order(
        body: PlaceOrderIn,
        shop: Shop,
        user_id: UserId,
        idempotency_key: Annotated[str | None, Header()] = None,
    ) -> PlacementOut:
        placed = unwrap(await shop.place_order(
            user_id,
            body.shipping_address.to_domain(),
            body.payment_method,
            billing_address=body.billing_address.to_domain() if body.billing_address else None,
            idempotency_token=idempotency_key,
        ))
        return PlacementOut.from_domain(placed)

    @app.get("/orders")
    async def list_orders(shop: Shop, user_id: UserId) -> list[OrderOut]:
        return [OrderOut.from_domain(o) for o in unwrap(await shop.list_orders(user_id))]

    @app.get("/orders/{order_id}")
    async def get_order(order_id: str, shop: Shop, user_id: UserId) -> OrderOut:
        return OrderOut.from_domain(unwrap(await shop.get_order(user_id, order_id)))

    @app.post("/orders/{order_id}/cancel")
    async def cancel_order(order_id: str, body: CancelIn, shop: Shop, user_id: UserId) -> OrderOut:
        return OrderOut.from_domain(unwrap(await shop.cancel_order(user_id, order_id, body.reason)))

    @app.post("/orders/{order_id}/advance", dependencies=[Depends(require_admin)])
    async def advance_order(order_id: str, body: AdvanceIn, shop: Shop) -> OrderOut:
        return OrderOut.from_domain(unwrap(await shop.advance_order(order_id, body.status, body.note)))

    @app.post("/orders/{order_id}/paid", dependencies=[Depends(require_admin)])
    async def mark_paid(order_id: str, shop: Shop) -> OrderOut:
        return OrderOut.from_domain(unwrap(await shop.mark_order_paid(order_id)))

    return app


def _jsonable(value: Any) -> Any:
    match value:
        case dict():
            return {k: _jsonable(v) for k, v in value.items()}
        case list() | tuple():
            return [_jsonable(v) for v in value]
        case Decimal():
            return str(value)
        case _:
            return value


__all__ = ("create_app", "ApiError", "STATUS_BY_CODE", "unwrap")
