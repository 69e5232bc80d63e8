"""Tests for the Order state machine: legal transitions, guards and the audit trail."""

import pytest
from orderdesk.order.errors import InvalidTransition
from orderdesk.order.order import Order, OrderStatus
from orderdesk.order.refunds import RefundReason, RefundRequest, RefundType, compute_refund


def _make_order():
    return Order.create(
        customer_id="cust-001",
        customer_email="jane@example.com",
        items_data=[
            {"product_id": "prod-001", "product_name": "Widget", "quantity": 2, "unit_price": 100.0},
            {"product_id": "prod-002", "product_name": "Gadget", "quantity": 1, "unit_price": 50.0},
        ],
        shipping_address={"street": "1 St", "city": "C", "postal_code": "00000", "country": "US"},
        payment_method="card",
    )


def _partial_refund(order):
    item = next(i for i in order.items if i.product_id == "prod-001")
    request = RefundRequest.partial(RefundReason.DAMAGED, [{"item_id": str(item.id), "quantity": 1}])
    order.apply_refund(compute_refund(order, request), RefundType.PARTIAL, RefundReason.DAMAGED)


def _full_refund(order):
    request = RefundRequest.full(RefundReason.CUSTOMER_REQUEST)
    order.apply_refund(compute_refund(order, request), RefundType.FULL, RefundReason.CUSTOMER_REQUEST)


def _order_at_state(target_status):
    """Create an order and advance it to the desired state."""
    order = _make_order()
    order._events.clear()
    if target_status == OrderStatus.PENDING:
        return order

    if target_status == OrderStatus.CANCELLED:
        order.cancel("Customer changed their mind")
        order._events.clear()
        return order

    order.start_processing("Payment confirmed")
    order._events.clear()
    if target_status == OrderStatus.PROCESSING:
        return order

    if target_status == OrderStatus.REFUNDED:
        _full_refund(order)
        order._events.clear()
        return order

    if target_status == OrderStatus.PARTIALLY_REFUNDED:
        _partial_refund(order)
        order._events.clear()
        return order

    order.ship("FedEx", "TRACK-001")
    order._events.clear()
    if target_status == OrderStatus.SHIPPED:
        return order

    order.complete()
    order._events.clear()
    return order


class TestLegalTransitions:
    def test_new_order_is_pending(self):
        order = _make_order()
        assert order.status == OrderStatus.PENDING.value
        assert order.transitions == []

    def test_pending_to_processing(self):
        order = _order_at_state(OrderStatus.PENDING)
        order.start_processing("Payment confirmed")
        assert order.status == OrderStatus.PROCESSING.value

    def test_pending_to_cancelled(self):
        order = _order_at_state(OrderStatus.PENDING)
        order.cancel("Out of stock upstream")
        assert order.status == OrderStatus.CANCELLED.value

    def test_processing_to_cancelled(self):
        order = _order_at_state(OrderStatus.PROCESSING)
        order.cancel("Fraud check failed")
        assert order.status == OrderStatus.CANCELLED.value

    def test_processing_to_shipped(self):
        order = _order_at_state(OrderStatus.PROCESSING)
        order.ship("UPS", "1Z999")
        assert order.status == OrderStatus.SHIPPED.value
        assert order.shipment.carrier == "UPS"
        assert order.shipment.tracking_number == "1Z999"
        assert order.shipment.shipped_at is not None

    def test_shipped_to_completed(self):
        order = _order_at_state(OrderStatus.SHIPPED)
        order.complete()
        assert order.status == OrderStatus.COMPLETED.value

    @pytest.mark.parametrize("start", [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.COMPLETED])
    def test_full_refund_allowed_from(self, start):
        order = _order_at_state(start)
        _full_refund(order)
        assert order.status == OrderStatus.REFUNDED.value

    @pytest.mark.parametrize("start", [OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.COMPLETED])
    def test_partial_refund_allowed_from(self, start):
        order = _order_at_state(start)
        _partial_refund(order)
        assert order.status == OrderStatus.PARTIALLY_REFUNDED.value

    def test_partially_refunded_accepts_another_partial_refund(self):
        order = _order_at_state(OrderStatus.PARTIALLY_REFUNDED)
        _partial_refund(order)
        assert order.status == OrderStatus.PARTIALLY_REFUNDED.value

    def test_partially_refunded_to_refunded(self):
        order = _order_at_state(OrderStatus.PARTIALLY_REFUNDED)
        _full_refund(order)
        assert order.status == OrderStatus.REFUNDED.value


class TestIllegalTransitions:
    @pytest.mark.parametrize(
        "start, action",
        [
            (OrderStatus.PENDING, lambda o: o.ship("FedEx", "T-1")),
            (OrderStatus.PENDING, lambda o: o.complete()),
            (OrderStatus.PROCESSING, lambda o: o.start_processing("again")),
            (OrderStatus.PROCESSING, lambda o: o.complete()),
            (OrderStatus.SHIPPED, lambda o: o.cancel("too late")),
            (OrderStatus.SHIPPED, lambda o: o.ship("FedEx", "T-2")),
            (OrderStatus.COMPLETED, lambda o: o.cancel("too late")),
            (OrderStatus.CANCELLED, lambda o: o.start_processing("revive")),
            (OrderStatus.REFUNDED, lambda o: o.ship("FedEx", "T-3")),
            (OrderStatus.PARTIALLY_REFUNDED, lambda o: o.cancel("cancel after refund")),
            (OrderStatus.PARTIALLY_REFUNDED, lambda o: o.ship("FedEx", "T-4")),
        ],
    )
    def test_rejected_without_mutation(self, start, action):
        order = _order_at_state(start)
        status_before = order.status
        trail_before = len(order.transitions)
        refunded_before = order.refunded_amount

        with pytest.raises(InvalidTransition):
            action(order)

        assert order.status == status_before
        assert len(order.transitions) == trail_before
        assert order.refunded_amount == refunded_before
        assert order._events == []

    def test_pending_order_cannot_be_refunded(self):
        order = _order_at_state(OrderStatus.PENDING)
        with pytest.raises(InvalidTransition):
            _full_refund(order)
        assert order.refunded_amount == 0.0

    def test_cancelled_order_cannot_be_refunded(self):
        order = _order_at_state(OrderStatus.CANCELLED)
        with pytest.raises(InvalidTransition):
            _full_refund(order)

    def test_error_names_both_statuses(self):
        order = _order_at_state(OrderStatus.PENDING)
        with pytest.raises(InvalidTransition) as exc:
            order.complete()
        assert exc.value.current == "Pending"
        assert exc.value.target == "Completed"
        assert "Cannot transition from Pending to Completed" in exc.value.messages["status"]

    def test_can_transition_to(self):
        order = _order_at_state(OrderStatus.PROCESSING)
        assert order.can_transition_to(OrderStatus.SHIPPED)
        assert not order.can_transition_to(OrderStatus.COMPLETED)


class TestReasonRequired:
    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_processing_requires_reason(self, reason):
        order = _order_at_state(OrderStatus.PENDING)
        with pytest.raises(InvalidTransition) as exc:
            order.start_processing(reason)
        assert "reason is required" in exc.value.messages["status"][0]
        assert order.status == OrderStatus.PENDING.value

    def test_cancellation_requires_reason(self):
        order = _order_at_state(OrderStatus.PROCESSING)
        with pytest.raises(InvalidTransition):
            order.cancel("")
        assert order.status == OrderStatus.PROCESSING.value


class TestAuditTrail:
    def test_each_transition_appends_one_record(self):
        order = _make_order()
        order.start_processing("Payment confirmed", note="Paid by card", actor="admin@shop")
        order.ship("FedEx", "TRACK-001", notify_customer=True)
        order.complete()

        trail = order.audit_trail
        assert [r.sequence for r in trail] == [1, 2, 3]
        assert [(r.previous_status, r.new_status) for r in trail] == [
            ("Pending", "Processing"),
            ("Processing", "Shipped"),
            ("Shipped", "Completed"),
        ]

    def test_record_captures_reason_note_actor_and_notification_flag(self):
        order = _make_order()
        record = order.start_processing(
            "Payment confirmed", note="Paid by card", actor="admin@shop", notify_customer=True
        )
        assert record.reason == "Payment confirmed"
        assert record.note == "Paid by card"
        assert record.actor == "admin@shop"
        assert record.customer_notified is True
        assert record.occurred_at is not None

    def test_refund_record_uses_reason_code(self):
        order = _order_at_state(OrderStatus.PROCESSING)
        _partial_refund(order)
        assert order.audit_trail[-1].reason == RefundReason.DAMAGED.value
        assert order.audit_trail[-1].new_status == OrderStatus.PARTIALLY_REFUNDED.value

    def test_updated_at_follows_transitions(self):
        order = _make_order()
        created = order.updated_at
        record = order.start_processing("Payment confirmed")
        assert order.updated_at == record.occurred_at
        assert order.updated_at >= created
