"""Application tests for refunds requested through the OrderWorkflow service."""

import json

import pytest
from orderdesk.order.creation import CreateOrder
from orderdesk.order.errors import InvalidRefundRequest, InvalidTransition, RefundExceedsBalance
from orderdesk.order.order import Order, OrderStatus
from orderdesk.order.refunds import RefundReason, RefundType
from orderdesk.order.workflow import OrderWorkflow
from protean import current_domain


def _processing_order(items=None):
    command = CreateOrder(
        customer_id="cust-001",
        customer_email="jane@example.com",
        items=json.dumps(
            items
            or [
                {"product_id": "prod-a", "product_name": "Item A", "quantity": 2, "unit_price": 100.0},
                {"product_id": "prod-b", "product_name": "Item B", "quantity": 1, "unit_price": 50.0},
            ]
        ),
    )
    order_id = current_domain.process(command, asynchronous=False)
    OrderWorkflow().request_transition(order_id, OrderStatus.PROCESSING, reason="Payment confirmed")
    return order_id


def _reload(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _item_id(order_id, product_id):
    return str(next(i.id for i in _reload(order_id).items if i.product_id == product_id))


class TestPartialRefunds:
    def test_partial_refund_is_persisted(self):
        order_id = _processing_order()
        item_id = _item_id(order_id, "prod-a")

        OrderWorkflow().request_refund(
            order_id,
            refund_type=RefundType.PARTIAL,
            reason=RefundReason.DAMAGED,
            items=[{"item_id": item_id, "quantity": 1}],
            note="Box arrived crushed",
        )

        stored = _reload(order_id)
        assert stored.status == OrderStatus.PARTIALLY_REFUNDED.value
        assert stored.refunded_amount == 100.0
        assert stored.find_item(item_id).refunded_quantity == 1
        assert stored.find_item(item_id).included_in_refund is True
        assert len(stored.refunds) == 1
        refund = stored.refunds[0]
        assert refund.amount == 100.0
        assert refund.reason_code == "Damaged"
        assert json.loads(refund.items)[0]["item_id"] == item_id

    def test_refund_type_and_reason_may_be_strings(self):
        order_id = _processing_order()
        order = OrderWorkflow().request_refund(
            order_id,
            refund_type="Partial",
            reason="Wrong_Item",
            items=[{"item_id": _item_id(order_id, "prod-b"), "quantity": 1}],
        )
        assert order.refunded_amount == 50.0

    def test_line_counters_survive_across_refunds(self):
        order_id = _processing_order()
        item_id = _item_id(order_id, "prod-a")
        workflow = OrderWorkflow()
        workflow.request_refund(order_id, "Partial", "Damaged", items=[{"item_id": item_id, "quantity": 1}])
        workflow.request_refund(order_id, "Partial", "Damaged", items=[{"item_id": item_id, "quantity": 1}])

        with pytest.raises(RefundExceedsBalance):
            workflow.request_refund(order_id, "Partial", "Damaged", items=[{"item_id": item_id, "quantity": 1}])

        stored = _reload(order_id)
        assert stored.refunded_amount == 200.0
        assert stored.find_item(item_id).refunded_quantity == 2
        assert len(stored.refunds) == 2

    def test_partial_refund_via_request_transition(self):
        order_id = _processing_order()
        order = OrderWorkflow().request_transition(
            order_id,
            OrderStatus.PARTIALLY_REFUNDED,
            reason=RefundReason.RETURNED,
            items=[{"item_id": _item_id(order_id, "prod-b"), "quantity": 1}],
        )
        assert order.status == OrderStatus.PARTIALLY_REFUNDED.value


class TestFullRefunds:
    def test_full_refund_after_partial_refunds_remaining_balance(self):
        order_id = _processing_order(
            [{"product_id": "prod-a", "product_name": "Item A", "quantity": 10, "unit_price": 100.0}]
        )
        workflow = OrderWorkflow()
        workflow.request_refund(
            order_id, "Partial", "Damaged", items=[{"item_id": _item_id(order_id, "prod-a"), "quantity": 3}]
        )

        order = workflow.request_refund(order_id, RefundType.FULL, RefundReason.CUSTOMER_REQUEST)

        assert order.status == OrderStatus.REFUNDED.value
        assert order.refunded_amount == 1000.0
        stored = _reload(order_id)
        assert sorted(r.amount for r in stored.refunds) == [300.0, 700.0]

    def test_full_refund_via_request_transition(self):
        order_id = _processing_order()
        order = OrderWorkflow().request_transition(
            order_id, OrderStatus.REFUNDED, reason="Customer_Request", note="Goodwill"
        )
        assert order.status == OrderStatus.REFUNDED.value
        assert order.remaining_balance == 0.0

    def test_refunded_order_is_terminal(self):
        order_id = _processing_order()
        workflow = OrderWorkflow()
        workflow.request_refund(order_id, "Full", "Customer_Request")

        with pytest.raises(InvalidTransition):
            workflow.request_refund(order_id, "Full", "Customer_Request")
        assert _reload(order_id).refunded_amount == 250.0


class TestRejectedRefunds:
    def test_pending_order_cannot_be_refunded(self):
        command = CreateOrder(
            customer_id="cust-001",
            items=json.dumps([{"product_id": "prod-a", "product_name": "Item A", "quantity": 1, "unit_price": 5.0}]),
        )
        order_id = current_domain.process(command, asynchronous=False)

        with pytest.raises(InvalidTransition):
            OrderWorkflow().request_refund(order_id, "Full", "Other")
        assert _reload(order_id).refunded_amount == 0.0

    def test_over_refund_leaves_order_unchanged(self):
        order_id = _processing_order()
        with pytest.raises(RefundExceedsBalance):
            OrderWorkflow().request_refund(
                order_id, "Partial", "Damaged", items=[{"item_id": _item_id(order_id, "prod-b"), "quantity": 2}]
            )

        stored = _reload(order_id)
        assert stored.status == OrderStatus.PROCESSING.value
        assert stored.refunded_amount == 0.0
        assert stored.refunds == []
        assert len(stored.transitions) == 1

    def test_partial_refund_without_items(self):
        order_id = _processing_order()
        with pytest.raises(InvalidRefundRequest):
            OrderWorkflow().request_refund(order_id, "Partial", "Damaged")

    def test_unknown_item(self):
        order_id = _processing_order()
        with pytest.raises(InvalidRefundRequest):
            OrderWorkflow().request_refund(order_id, "Partial", "Damaged", items=[{"item_id": "nope", "quantity": 1}])

    @pytest.mark.parametrize("refund_type, reason", [("Half", "Damaged"), ("Full", "Bored"), ("Full", None)])
    def test_unknown_type_or_reason(self, refund_type, reason):
        order_id = _processing_order()
        with pytest.raises(InvalidRefundRequest):
            OrderWorkflow().request_refund(order_id, refund_type, reason)

    @pytest.mark.parametrize(
        "items", [[{"quantity": 1}], [{"item_id": "x", "quantity": "two"}], [{"item_id": "x", "quantity": None}]]
    )
    def test_malformed_items_leave_order_unchanged(self, items):
        order_id = _processing_order()
        with pytest.raises(InvalidRefundRequest) as exc:
            OrderWorkflow().request_refund(order_id, "Partial", "Damaged", items=items)

        assert "items" in exc.value.messages
        stored = _reload(order_id)
        assert stored.refunded_amount == 0.0
        assert stored.refunds == []
