"""FastAPI routes for the order desk: thin clients of the order workflow.

Each route issues one request to the workflow and renders the
authoritative order state it returns. Workflow errors become HTTP errors
whose body names the error code, so the admin console can branch on it.
"""

import json
from contextlib import contextmanager

from fastapi import APIRouter, Header, HTTPException
from protean.exceptions import ValidationError
from protean.utils.globals import current_domain

from orderdesk.api.schemas import (
    ConfirmDeliveryRequest,
    CreateOrderRequest,
    InventoryCheckResponse,
    LineItemResponse,
    OrderIdResponse,
    OrderResponse,
    RefundOrderRequest,
    ShipmentResponse,
    ShipOrderRequest,
    ShortfallIssueResponse,
    StockCheckResponse,
    TransitionRecordResponse,
    TransitionRequest,
)
from orderdesk.order.creation import CreateOrder
from orderdesk.order.errors import (
    ConcurrentModification,
    IdempotencyConflict,
    InsufficientInventory,
    OrderNotFound,
    OrderWorkflowError,
)
from orderdesk.order.order import Order
from orderdesk.order.workflow import OrderWorkflow

order_router = APIRouter(prefix="/orders", tags=["orders"])

_STATUS_CODES = {
    OrderNotFound: 404,
    ConcurrentModification: 409,
    IdempotencyConflict: 409,
    InsufficientInventory: 422,
}


@contextmanager
def _workflow_errors():
    """Translate workflow errors into HTTP errors."""
    try:
        yield
    except OrderWorkflowError as exc:
        detail = {"error": exc.code, "messages": exc.messages}
        if isinstance(exc, InsufficientInventory):
            detail["issues"] = [issue.to_dict() for issue in exc.issues]
        raise HTTPException(status_code=_STATUS_CODES.get(type(exc), 400), detail=detail) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail={"error": "validation_error", "messages": exc.messages}) from exc


def _order_response(order: Order) -> OrderResponse:
    shipment = None
    if order.shipment is not None:
        shipment = ShipmentResponse(
            carrier=order.shipment.carrier,
            tracking_number=order.shipment.tracking_number,
            estimated_delivery=order.shipment.estimated_delivery,
            notes=order.shipment.notes,
            shipped_at=order.shipment.shipped_at,
        )

    return OrderResponse(
        order_id=str(order.id),
        order_number=order.order_number,
        customer_id=str(order.customer_id),
        status=order.status,
        total=order.total,
        refunded_amount=order.refunded_amount or 0.0,
        remaining_balance=order.remaining_balance,
        payment_method=order.payment_method,
        items=[
            LineItemResponse(
                item_id=str(item.id),
                product_id=str(item.product_id),
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                refunded_quantity=item.refunded_quantity or 0,
                included_in_refund=bool(item.included_in_refund),
            )
            for item in (order.items or [])
        ],
        shipment=shipment,
        audit_trail=[
            TransitionRecordResponse(
                sequence=record.sequence,
                previous_status=record.previous_status,
                new_status=record.new_status,
                reason=record.reason,
                note=record.note,
                actor=record.actor,
                customer_notified=bool(record.customer_notified),
                occurred_at=record.occurred_at,
            )
            for record in order.audit_trail
        ],
    )


# ---------------------------------------------------------------------------
# Order placement and queries
# ---------------------------------------------------------------------------
@order_router.post("", status_code=201, response_model=OrderIdResponse)
async def create_order(body: CreateOrderRequest) -> OrderIdResponse:
    command = CreateOrder(
        customer_id=body.customer_id,
        customer_email=body.customer_email,
        items=json.dumps([item.model_dump() for item in body.items]),
        shipping_address=json.dumps(body.shipping_address.model_dump()) if body.shipping_address else None,
        payment_method=body.payment_method,
        tax_total=body.tax_total,
        shipping_cost=body.shipping_cost,
    )
    with _workflow_errors():
        result = current_domain.process(command, asynchronous=False)
    return OrderIdResponse(order_id=result)


@order_router.get("/{order_id}", response_model=OrderResponse)
async def get_order(order_id: str) -> OrderResponse:
    with _workflow_errors():
        order = OrderWorkflow().get_order(order_id)
    return _order_response(order)


@order_router.get("/{order_id}/inventory", response_model=InventoryCheckResponse)
async def check_order_inventory(order_id: str) -> InventoryCheckResponse:
    with _workflow_errors():
        result = OrderWorkflow().check_inventory(order_id)
    return InventoryCheckResponse(
        can_ship=result.can_ship,
        issues=[ShortfallIssueResponse(**issue.to_dict()) for issue in result.issues],
        inventory_checks=[StockCheckResponse(**check.to_dict()) for check in result.checks],
    )


# ---------------------------------------------------------------------------
# Workflow operations
# ---------------------------------------------------------------------------
@order_router.put("/{order_id}/status", response_model=OrderResponse)
async def request_transition(
    order_id: str,
    body: TransitionRequest,
    idempotency_key: str | None = Header(default=None),
) -> OrderResponse:
    details = {}
    if body.carrier is not None or body.tracking_number is not None:
        details.update(
            carrier=body.carrier,
            tracking_number=body.tracking_number,
            estimated_delivery=body.estimated_delivery,
        )
    if body.items is not None:
        details["items"] = [item.model_dump() for item in body.items]

    with _workflow_errors():
        order = OrderWorkflow().request_transition(
            order_id,
            body.target_status,
            reason=body.reason,
            note=body.note,
            notify_customer=body.notify_customer,
            idempotency_key=body.idempotency_key or idempotency_key,
            actor=body.actor,
            **details,
        )
    return _order_response(order)


@order_router.put("/{order_id}/ship", response_model=OrderResponse)
async def ship_order(
    order_id: str,
    body: ShipOrderRequest,
    idempotency_key: str | None = Header(default=None),
) -> OrderResponse:
    with _workflow_errors():
        order = OrderWorkflow().dispatch(
            order_id,
            tracking_number=body.tracking_number,
            carrier=body.carrier,
            estimated_delivery=body.estimated_delivery,
            notes=body.notes,
            notify_customer=body.notify_customer,
            idempotency_key=body.idempotency_key or idempotency_key,
            actor=body.actor,
        )
    return _order_response(order)


@order_router.put("/{order_id}/refund", response_model=OrderResponse)
async def refund_order(
    order_id: str,
    body: RefundOrderRequest,
    idempotency_key: str | None = Header(default=None),
) -> OrderResponse:
    with _workflow_errors():
        order = OrderWorkflow().request_refund(
            order_id,
            refund_type=body.refund_type,
            reason=body.reason,
            items=[item.model_dump() for item in body.items] if body.items else None,
            note=body.note,
            notify_customer=body.notify_customer,
            idempotency_key=body.idempotency_key or idempotency_key,
            actor=body.actor,
        )
    return _order_response(order)


@order_router.put("/{order_id}/delivery", response_model=OrderResponse)
async def confirm_delivery(
    order_id: str,
    body: ConfirmDeliveryRequest,
    idempotency_key: str | None = Header(default=None),
) -> OrderResponse:
    with _workflow_errors():
        order = OrderWorkflow().confirm_delivery(
            order_id,
            delivered_at=body.delivered_at,
            note=body.note,
            notify_customer=body.notify_customer,
            idempotency_key=body.idempotency_key or idempotency_key,
            actor=body.actor,
        )
    return _order_response(order)
