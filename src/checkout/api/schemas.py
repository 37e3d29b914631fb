"""Pydantic request/response schemas for the Checkout API.

These are external contracts (anti-corruption layer), separate from the
Protean aggregates. Business rules such as "quantity must be positive" are
left to the domain model so that every entry point reports them the same way.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    company: str | None = None
    address1: str
    address2: str | None = None
    city: str
    state_or_province: str | None = None
    postal_code: str
    country_code: str
    phone: str | None = None


class CartItemSchema(BaseModel):
    product_id: int
    variant_id: int | None = None
    name: str | None = None
    quantity: int
    unit_price: float = 0.0


# ---------------------------------------------------------------------------
# Checkout session requests
# ---------------------------------------------------------------------------
class CreateCheckoutSessionRequest(BaseModel):
    user_id: str
    items: list[CartItemSchema]
    tax: float = 0.0
    shipping: float = 0.0
    currency: str = "USD"
    organization_id: str | None = None
    location_id: str | None = None
    idempotency_key: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-001",
                    "items": [{"product_id": 112, "quantity": 2, "unit_price": 24.5}],
                    "tax": 3.92,
                }
            ]
        }
    }


class AddAddressesRequest(BaseModel):
    cart_id: str | None = None
    billing: AddressSchema
    shipping: AddressSchema


class SelectShippingRequest(BaseModel):
    checkout_id: str | None = None
    consignment_id: str | None = None
    option_id: str


class ProcessPaymentRequest(BaseModel):
    checkout_id: str | None = None
    payment: dict[str, Any]


class ResumeCheckoutRequest(BaseModel):
    billing: AddressSchema | None = None
    shipping: AddressSchema | None = None
    shipping_option_id: str | None = None
    consignment_id: str | None = None
    payment: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Checkout session responses
# ---------------------------------------------------------------------------
class LineItemResponse(BaseModel):
    product_id: int
    variant_id: int | None = None
    name: str | None = None
    quantity: int
    unit_price: float


class CheckoutSessionResponse(BaseModel):
    id: str
    user_id: str
    organization_id: str | None = None
    location_id: str | None = None
    status: str
    next_step: str | None = None
    line_items: list[LineItemResponse]
    cart_id: str | None = None
    checkout_id: str | None = None
    order_id: str | None = None
    consignment_id: str | None = None
    shipping_option_id: str | None = None
    subtotal: float
    tax: float
    shipping: float
    total: float
    currency: str
    last_error: str | None = None
    retry_count: int = 0
    payment_captured: bool = False
    requires_reconciliation: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def from_session(cls, session) -> "CheckoutSessionResponse":
        next_step = session.next_step()
        return cls(
            id=str(session.id),
            user_id=str(session.user_id),
            organization_id=session.organization_id,
            location_id=session.location_id,
            status=session.status,
            next_step=next_step.value if next_step else None,
            line_items=[
                LineItemResponse(
                    product_id=item.product_id,
                    variant_id=item.variant_id,
                    name=item.name,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                )
                for item in session.line_items
            ],
            cart_id=session.cart_id,
            checkout_id=session.checkout_id,
            order_id=session.order_id,
            consignment_id=session.consignment_id,
            shipping_option_id=session.shipping_option_id,
            subtotal=session.subtotal,
            tax=session.tax,
            shipping=session.shipping,
            total=session.total,
            currency=session.currency,
            last_error=session.last_error,
            retry_count=session.retry_count or 0,
            payment_captured=bool(session.payment_captured),
            requires_reconciliation=bool(session.requires_reconciliation),
            created_at=session.created_at,
            updated_at=session.updated_at,
            completed_at=session.completed_at,
            expires_at=session.expires_at,
        )


class ShippingOptionsResponse(BaseModel):
    session_id: str
    consignment_id: str
    shipping_options: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Recurring orders
# ---------------------------------------------------------------------------
class CreateRecurringOrderRequest(BaseModel):
    user_id: str
    product_id: int
    variant_id: int | None = None
    product_name: str | None = None
    quantity: int = Field(gt=0)
    unit_price: float = Field(default=0.0, ge=0)
    frequency: str
    frequency_interval: int = Field(default=1, gt=0)
    organization_id: str | None = None
    location_id: str | None = None
    discount_percentage: float = Field(default=0.0, ge=0, le=100)
    start_date: date | None = None
    end_date: date | None = None
    notes: str | None = None


class UpdateRecurringOrderRequest(BaseModel):
    quantity: int | None = Field(default=None, gt=0)
    frequency: str | None = None
    frequency_interval: int | None = Field(default=None, gt=0)
    location_id: str | None = None
    discount_percentage: float | None = Field(default=None, ge=0, le=100)
    end_date: date | None = None
    notes: str | None = None


class RecurringOrderResponse(BaseModel):
    id: str
    user_id: str
    product_id: int
    variant_id: int | None = None
    quantity: int
    unit_price: float
    discount_percentage: float
    order_amount: float
    frequency: str
    frequency_interval: int
    frequency_display: str
    status: str
    start_date: date
    end_date: date | None = None
    next_order_date: date
    last_order_date: date | None = None
    total_orders: int
    notes: str | None = None


class RecurringOrderHistoryResponse(BaseModel):
    id: str
    recurring_order_id: str
    checkout_session_id: str | None = None
    scheduled_date: date
    status: str
    amount: float
    error_message: str | None = None
    created_at: datetime | None = None


class ProcessRecurringOrdersResponse(BaseModel):
    success: bool
    processed: int
    failed: int
    errors: list[str]
    message: str
