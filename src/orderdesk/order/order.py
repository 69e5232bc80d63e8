"""Order aggregate (CQRS): the state machine at the core of the order desk.

The Order aggregate owns its line items, the append-only audit trail of
status transitions, the refunds applied against it, and the idempotency
tokens of requests already processed. It is persisted as current state
(not event sourced); the audit trail is the transition history.

State Machine:
    PENDING → PROCESSING → SHIPPED → COMPLETED
    {PENDING, PROCESSING} → CANCELLED
    {PROCESSING, SHIPPED, COMPLETED} → {REFUNDED, PARTIALLY_REFUNDED}
    PARTIALLY_REFUNDED → {REFUNDED, PARTIALLY_REFUNDED}
"""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum
from uuid import uuid4

from protean import atomic_change, invariant
from protean.exceptions import ValidationError
from protean.fields import (
    Boolean,
    DateTime,
    Float,
    HasMany,
    Identifier,
    Integer,
    String,
    Text,
    ValueObject,
)

from orderdesk.domain import orderdesk
from orderdesk.order.errors import InvalidTransition
from orderdesk.order.events import (
    OrderCancelled,
    OrderCompleted,
    OrderCreated,
    OrderProcessingStarted,
    OrderRefunded,
    OrderShipped,
)
from orderdesk.order.refunds import RefundComputation, RefundReason, RefundType, to_cents


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"
    PARTIALLY_REFUNDED = "Partially_Refunded"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {
        OrderStatus.CANCELLED,
        OrderStatus.SHIPPED,
        OrderStatus.REFUNDED,
        OrderStatus.PARTIALLY_REFUNDED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.COMPLETED,
        OrderStatus.REFUNDED,
        OrderStatus.PARTIALLY_REFUNDED,
    },
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED, OrderStatus.PARTIALLY_REFUNDED},
    # Further partial refunds keep the order in PARTIALLY_REFUNDED
    OrderStatus.PARTIALLY_REFUNDED: {OrderStatus.REFUNDED, OrderStatus.PARTIALLY_REFUNDED},
    OrderStatus.CANCELLED: set(),  # terminal
    OrderStatus.REFUNDED: set(),  # terminal
}

_REASON_REQUIRED = {OrderStatus.PROCESSING, OrderStatus.CANCELLED}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@orderdesk.value_object(part_of="Order")
class ShippingAddress:
    street = String(required=True, max_length=255)
    city = String(required=True, max_length=100)
    state = String(max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)


@orderdesk.value_object(part_of="Order")
class ShipmentInfo:
    """Carrier details recorded when the order is dispatched."""

    carrier = String(required=True, max_length=100)
    tracking_number = String(required=True, max_length=255)
    estimated_delivery = DateTime()
    notes = String(max_length=1000)
    shipped_at = DateTime()


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@orderdesk.entity(part_of="Order")
class LineItem:
    """A single product line; ``unit_price`` is the price at the time of order."""

    product_id = Identifier(required=True)
    product_name = String(required=True, max_length=255)
    quantity = Integer(required=True, min_value=1)
    unit_price = Float(required=True, min_value=0.0)
    refunded_quantity = Integer(default=0, min_value=0)
    included_in_refund = Boolean(default=False)

    @invariant.post
    def refunded_quantity_cannot_exceed_ordered(self):
        if (self.refunded_quantity or 0) > self.quantity:
            raise ValidationError(
                {"refunded_quantity": [f"Cannot refund more than {self.quantity} unit(s) of {self.product_name}"]}
            )

    @property
    def refundable_quantity(self) -> int:
        return self.quantity - (self.refunded_quantity or 0)

    @property
    def line_total(self) -> float:
        return to_cents(self.unit_price * self.quantity)


@orderdesk.entity(part_of="Order")
class TransitionRecord:
    """One entry in the audit trail. Written once, never changed."""

    sequence = Integer(required=True, min_value=1)
    previous_status = String(required=True, max_length=50)
    new_status = String(required=True, max_length=50)
    reason = String(max_length=500)
    note = String(max_length=2000)
    actor = String(max_length=255, default="system")
    customer_notified = Boolean(default=False)
    occurred_at = DateTime(required=True)


@orderdesk.entity(part_of="Order")
class RefundRecord:
    transaction_id = String(required=True, max_length=50)
    refund_type = String(required=True, choices=RefundType)
    reason_code = String(required=True, choices=RefundReason)
    amount = Float(required=True, min_value=0.0)
    items = Text()  # JSON list of refunded line details
    note = String(max_length=2000)
    actor = String(max_length=255)
    processed_at = DateTime(required=True)


@orderdesk.entity(part_of="Order")
class ProcessedRequest:
    """An idempotency token and what the request it guarded produced."""

    idempotency_key = String(required=True, max_length=255)
    fingerprint = String(required=True, max_length=255)
    resulting_status = String(required=True, max_length=50)
    transition_sequence = Integer()
    recorded_at = DateTime(required=True)


# ---------------------------------------------------------------------------
# Aggregate Root (CQRS)
# ---------------------------------------------------------------------------
@orderdesk.aggregate
class Order:
    order_number = String(max_length=50)
    customer_id = Identifier(required=True)
    customer_email = String(max_length=255)
    items = HasMany(LineItem)
    shipping_address = ValueObject(ShippingAddress)
    payment_method = String(max_length=50)
    subtotal = Float(default=0.0)
    tax_total = Float(default=0.0)
    shipping_cost = Float(default=0.0)
    total = Float(required=True, min_value=0.0)
    status = String(
        choices=OrderStatus,
        default=OrderStatus.PENDING.value,
    )
    refunded_amount = Float(default=0.0)
    shipment = ValueObject(ShipmentInfo)
    delivered_at = DateTime()
    transitions = HasMany(TransitionRecord)
    refunds = HasMany(RefundRecord)
    processed_requests = HasMany(ProcessedRequest)
    created_at = DateTime()
    updated_at = DateTime()

    # -------------------------------------------------------------------
    # Invariants
    # -------------------------------------------------------------------
    @invariant.post
    def refunded_amount_within_total(self):
        refunded = self.refunded_amount or 0.0
        if refunded < 0 or to_cents(refunded) > to_cents(self.total):
            raise ValidationError(
                {"refunded_amount": [f"Refunded amount {refunded} must be between 0 and the order total {self.total}"]}
            )

    @invariant.post
    def status_reflects_refunded_amount(self):
        refunded = to_cents(self.refunded_amount or 0.0)
        if refunded <= 0:
            return
        if refunded == to_cents(self.total):
            if self.status != OrderStatus.REFUNDED.value:
                raise ValidationError({"status": ["A fully refunded order must be in Refunded status"]})
        elif self.status != OrderStatus.PARTIALLY_REFUNDED.value:
            raise ValidationError({"status": ["A partially refunded order must be in Partially_Refunded status"]})

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def create(
        cls,
        customer_id: str,
        items_data: list[dict],
        shipping_address: dict | None = None,
        payment_method: str | None = None,
        customer_email: str | None = None,
        tax_total: float = 0.0,
        shipping_cost: float = 0.0,
    ):
        """Place a new order in PENDING status.

        The total is fixed here from the line item snapshots; later price
        changes in the catalogue never reach an existing order.
        """
        if not items_data:
            raise ValidationError({"items": ["An order needs at least one line item"]})

        now = datetime.now(UTC)
        subtotal = to_cents(sum(item["unit_price"] * item["quantity"] for item in items_data))
        total = to_cents(subtotal + tax_total + shipping_cost)
        order = cls(
            order_number=f"ORD-{now:%Y%m%d}-{uuid4().hex[:6].upper()}",
            customer_id=customer_id,
            customer_email=customer_email,
            shipping_address=ShippingAddress(**shipping_address) if shipping_address else None,
            payment_method=payment_method,
            subtotal=subtotal,
            tax_total=tax_total,
            shipping_cost=shipping_cost,
            total=total,
            status=OrderStatus.PENDING.value,
            refunded_amount=0.0,
            created_at=now,
            updated_at=now,
        )
        for item_data in items_data:
            order.add_items(LineItem(**item_data))

        order.raise_(
            OrderCreated(
                order_id=str(order.id),
                order_number=order.order_number,
                customer_id=customer_id,
                items=json.dumps(items_data),
                total=total,
                created_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def remaining_balance(self) -> float:
        return to_cents(self.total - (self.refunded_amount or 0.0))

    @property
    def audit_trail(self) -> list:
        """Transition records in the order they were written."""
        return sorted(self.transitions or [], key=lambda record: record.sequence)

    def can_transition_to(self, target_status: OrderStatus) -> bool:
        return target_status in _VALID_TRANSITIONS.get(OrderStatus(self.status), set())

    def find_item(self, item_id: str):
        return next((i for i in (self.items or []) if str(i.id) == str(item_id)), None)

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def _assert_can_transition(self, target_status: OrderStatus, reason: str | None = None) -> None:
        current = OrderStatus(self.status)
        if not self.can_transition_to(target_status):
            raise InvalidTransition(current.value, target_status.value)
        if target_status in _REASON_REQUIRED and not (reason or "").strip():
            raise InvalidTransition(
                current.value,
                target_status.value,
                f"A reason is required to move an order to {target_status.value}",
            )

    def _record_transition(
        self,
        target_status: OrderStatus,
        reason: str | None,
        note: str | None,
        actor: str,
        customer_notified: bool,
        occurred_at: datetime,
    ) -> TransitionRecord:
        record = TransitionRecord(
            sequence=len(self.transitions or []) + 1,
            previous_status=self.status,
            new_status=target_status.value,
            reason=reason or "",
            note=note or "",
            actor=actor,
            customer_notified=customer_notified,
            occurred_at=occurred_at,
        )
        self.add_transitions(record)
        self.status = target_status.value
        self.updated_at = occurred_at
        return record

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def start_processing(
        self, reason: str, note: str | None = None, actor: str = "system", notify_customer: bool = False
    ) -> TransitionRecord:
        """Move a pending order into processing, e.g. once payment is confirmed."""
        self._assert_can_transition(OrderStatus.PROCESSING, reason)
        now = datetime.now(UTC)
        record = self._record_transition(OrderStatus.PROCESSING, reason, note, actor, notify_customer, now)
        self.raise_(
            OrderProcessingStarted(
                order_id=str(self.id),
                reason=reason,
                actor=actor,
                started_at=now,
            )
        )
        return record

    def cancel(
        self, reason: str, note: str | None = None, actor: str = "system", notify_customer: bool = False
    ) -> TransitionRecord:
        self._assert_can_transition(OrderStatus.CANCELLED, reason)
        previous_status = self.status
        now = datetime.now(UTC)
        record = self._record_transition(OrderStatus.CANCELLED, reason, note, actor, notify_customer, now)
        self.raise_(
            OrderCancelled(
                order_id=str(self.id),
                previous_status=previous_status,
                reason=reason,
                actor=actor,
                cancelled_at=now,
            )
        )
        return record

    def ship(
        self,
        carrier: str,
        tracking_number: str,
        estimated_delivery: datetime | None = None,
        notes: str | None = None,
        reason: str | None = None,
        actor: str = "system",
        notify_customer: bool = False,
    ) -> TransitionRecord:
        """Attach carrier details and move the order to SHIPPED.

        The inventory guard runs before this is called; the aggregate only
        enforces legality of the transition itself.
        """
        self._assert_can_transition(OrderStatus.SHIPPED)
        now = datetime.now(UTC)
        with atomic_change(self):
            self.shipment = ShipmentInfo(
                carrier=carrier,
                tracking_number=tracking_number,
                estimated_delivery=estimated_delivery,
                notes=notes or "",
                shipped_at=now,
            )
            record = self._record_transition(
                OrderStatus.SHIPPED,
                reason or f"Shipped via {carrier} ({tracking_number})",
                notes,
                actor,
                notify_customer,
                now,
            )
        self.raise_(
            OrderShipped(
                order_id=str(self.id),
                carrier=carrier,
                tracking_number=tracking_number,
                estimated_delivery=estimated_delivery,
                item_count=len(self.items or []),
                shipped_at=now,
            )
        )
        return record

    def complete(
        self,
        reason: str | None = None,
        note: str | None = None,
        actor: str = "system",
        notify_customer: bool = False,
        delivered_at: datetime | None = None,
    ) -> TransitionRecord:
        """Close out a shipped order once delivery is confirmed."""
        self._assert_can_transition(OrderStatus.COMPLETED)
        now = datetime.now(UTC)
        with atomic_change(self):
            if delivered_at is not None:
                self.delivered_at = delivered_at
            record = self._record_transition(
                OrderStatus.COMPLETED, reason or "Delivery confirmed", note, actor, notify_customer, now
            )
        self.raise_(
            OrderCompleted(
                order_id=str(self.id),
                delivered_at=delivered_at,
                completed_at=now,
            )
        )
        return record

    # -------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------
    def apply_refund(
        self,
        computation: RefundComputation,
        refund_type: RefundType,
        reason: RefundReason,
        note: str | None = None,
        actor: str = "system",
        notify_customer: bool = False,
    ) -> RefundRecord:
        """Apply an amount already computed by the refund calculator.

        Refunded amount, line counters, status and both records change
        together; invariants are checked once the whole change is in place.
        """
        new_refunded = to_cents((self.refunded_amount or 0.0) + computation.amount)
        target = (
            OrderStatus.REFUNDED
            if new_refunded == to_cents(self.total)
            else OrderStatus.PARTIALLY_REFUNDED
        )
        self._assert_can_transition(target)

        now = datetime.now(UTC)
        transaction_id = f"REF-{int(now.timestamp() * 1000)}-{uuid4().hex[:9].upper()}"
        line_details = [line.to_dict() for line in computation.lines]

        with atomic_change(self):
            for line in computation.lines:
                item = self.find_item(line.item_id)
                item.refunded_quantity = (item.refunded_quantity or 0) + line.quantity
                item.included_in_refund = True

            refund = RefundRecord(
                transaction_id=transaction_id,
                refund_type=refund_type.value,
                reason_code=reason.value,
                amount=computation.amount,
                items=json.dumps(line_details),
                note=note or "",
                actor=actor,
                processed_at=now,
            )
            self.add_refunds(refund)
            self.refunded_amount = new_refunded
            self._record_transition(target, reason.value, note, actor, notify_customer, now)

        self.raise_(
            OrderRefunded(
                order_id=str(self.id),
                transaction_id=transaction_id,
                refund_type=refund_type.value,
                reason_code=reason.value,
                amount=computation.amount,
                refunded_amount=new_refunded,
                resulting_status=target.value,
                items=json.dumps(line_details),
                refunded_at=now,
            )
        )
        return refund

    # -------------------------------------------------------------------
    # Idempotency tokens
    # -------------------------------------------------------------------
    def find_processed_request(self, idempotency_key: str, ttl_seconds: int):
        """Return the unexpired record for ``idempotency_key``, if any."""
        cutoff = datetime.now(UTC) - timedelta(seconds=ttl_seconds)
        return next(
            (
                r
                for r in (self.processed_requests or [])
                if r.idempotency_key == idempotency_key and r.recorded_at >= cutoff
            ),
            None,
        )

    def remember_request(self, idempotency_key: str, fingerprint: str, ttl_seconds: int) -> ProcessedRequest:
        """Store the outcome of a request and drop tokens past their TTL."""
        now = datetime.now(UTC)
        cutoff = now - timedelta(seconds=ttl_seconds)
        for expired in [r for r in (self.processed_requests or []) if r.recorded_at < cutoff]:
            self.remove_processed_requests(expired)

        last = self.audit_trail[-1] if self.transitions else None
        processed = ProcessedRequest(
            idempotency_key=idempotency_key,
            fingerprint=fingerprint,
            resulting_status=self.status,
            transition_sequence=last.sequence if last else None,
            recorded_at=now,
        )
        self.add_processed_requests(processed)
        return processed
