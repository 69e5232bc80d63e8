"""Pydantic request/response schemas for the order desk API.

These are external contracts (anti-corruption layer), separate from
internal Protean commands and aggregates.
"""

from datetime import datetime

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared sub-models
# ---------------------------------------------------------------------------
class AddressSchema(BaseModel):
    street: str
    city: str
    state: str | None = None
    postal_code: str
    country: str


class LineItemSchema(BaseModel):
    product_id: str
    product_name: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class RefundItemSchema(BaseModel):
    item_id: str
    quantity: int = Field(ge=1, default=1)


# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------
class CreateOrderRequest(BaseModel):
    customer_id: str
    customer_email: str | None = None
    items: list[LineItemSchema] = Field(min_length=1)
    shipping_address: AddressSchema | None = None
    payment_method: str | None = None
    tax_total: float = Field(ge=0, default=0.0)
    shipping_cost: float = Field(ge=0, default=0.0)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "customer_id": "cust-001",
                    "customer_email": "jane@example.com",
                    "items": [
                        {
                            "product_id": "prod-001",
                            "product_name": "Widget",
                            "quantity": 2,
                            "unit_price": 25.0,
                        }
                    ],
                    "shipping_address": {
                        "street": "123 Main St",
                        "city": "Springfield",
                        "state": "IL",
                        "postal_code": "62701",
                        "country": "US",
                    },
                    "payment_method": "card",
                    "tax_total": 4.0,
                    "shipping_cost": 5.0,
                }
            ]
        }
    }


class TransitionRequest(BaseModel):
    target_status: str
    reason: str | None = None
    note: str | None = None
    notify_customer: bool = False
    idempotency_key: str | None = None
    actor: str | None = None
    # Routed to the dispatcher or refund calculator for those targets
    carrier: str | None = None
    tracking_number: str | None = None
    estimated_delivery: datetime | None = None
    items: list[RefundItemSchema] | None = None


class ShipOrderRequest(BaseModel):
    carrier: str = ""
    tracking_number: str = ""
    estimated_delivery: datetime | None = None
    notes: str | None = None
    notify_customer: bool = False
    idempotency_key: str | None = None
    actor: str | None = None


class RefundOrderRequest(BaseModel):
    refund_type: str
    reason: str
    items: list[RefundItemSchema] | None = None
    note: str | None = None
    notify_customer: bool = False
    idempotency_key: str | None = None
    actor: str | None = None

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "refund_type": "Partial",
                    "reason": "Damaged",
                    "items": [{"item_id": "item-001", "quantity": 1}],
                    "note": "Box arrived crushed",
                    "notify_customer": True,
                }
            ]
        }
    }


class ConfirmDeliveryRequest(BaseModel):
    delivered_at: datetime | None = None
    note: str | None = None
    notify_customer: bool = False
    idempotency_key: str | None = None
    actor: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------
class OrderIdResponse(BaseModel):
    order_id: str


class LineItemResponse(BaseModel):
    item_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: float
    refunded_quantity: int
    included_in_refund: bool


class TransitionRecordResponse(BaseModel):
    sequence: int
    previous_status: str
    new_status: str
    reason: str | None = None
    note: str | None = None
    actor: str | None = None
    customer_notified: bool
    occurred_at: datetime


class ShipmentResponse(BaseModel):
    carrier: str
    tracking_number: str
    estimated_delivery: datetime | None = None
    notes: str | None = None
    shipped_at: datetime | None = None


class OrderResponse(BaseModel):
    order_id: str
    order_number: str | None = None
    customer_id: str
    status: str
    total: float
    refunded_amount: float
    remaining_balance: float
    payment_method: str | None = None
    items: list[LineItemResponse]
    shipment: ShipmentResponse | None = None
    audit_trail: list[TransitionRecordResponse]


class StockCheckResponse(BaseModel):
    item_id: str
    product_id: str
    product_name: str
    requested: int
    available: int
    sufficient: bool


class ShortfallIssueResponse(BaseModel):
    item_id: str
    product_id: str
    product_name: str
    requested: int
    available: int
    issue: str


class InventoryCheckResponse(BaseModel):
    can_ship: bool
    issues: list[ShortfallIssueResponse]
    inventory_checks: list[StockCheckResponse]
