"""Order workflow: the single entry point for changing an order.

Every mutating operation follows the same sequence inside one Unit of
Work: load the order, replay a stored result if the idempotency key was
seen before, run the guards, mutate the aggregate, remember the key, and
save. The repository's optimistic version check turns a lost race into
``ConcurrentModification``. Customer notifications are enqueued only after
the commit; a notifier failure is logged and never undoes the change.
"""

from collections.abc import Callable
from datetime import datetime

import structlog
from protean import use_case
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.utils.globals import current_domain

from orderdesk.domain import orderdesk
from orderdesk.notifier import get_notifier
from orderdesk.order.errors import (
    ConcurrentModification,
    IdempotencyConflict,
    InsufficientInventory,
    InvalidRefundRequest,
    InvalidTransition,
    MissingShippingDetails,
    OrderNotFound,
)
from orderdesk.order.inventory import InventoryCheck, check_inventory
from orderdesk.order.order import Order, OrderStatus
from orderdesk.order.refunds import RefundReason, RefundRequest, RefundType, compute_refund
from orderdesk.stock import get_stock_query
from orderdesk.utils.logging import bind_order_context, clear_context

logger = structlog.get_logger(__name__)

DEFAULT_IDEMPOTENCY_TTL_SECONDS = 86400

# A change returns the notification to send, as (kind, payload), or None
Change = Callable[[Order], tuple[str, dict] | None]


def _status_payload(order: Order, record) -> dict:
    return {
        "order_number": order.order_number,
        "customer_email": order.customer_email,
        "previous_status": record.previous_status,
        "new_status": record.new_status,
        "reason": record.reason,
        "note": record.note,
    }


def _coerce(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidRefundRequest(field, f"{value!r} is not one of: {allowed}") from None


@orderdesk.application_service(part_of=Order)
class OrderWorkflow:
    """Admin-facing operations on orders: transitions, shipping, refunds."""

    def __init__(self, stock=None, notifier=None):
        self.stock = stock or get_stock_query()
        self.notifier = notifier or get_notifier()

    # -------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------
    @property
    def idempotency_ttl(self) -> int:
        custom = current_domain.config.get("custom", {})
        return int(custom.get("idempotency_ttl_seconds", DEFAULT_IDEMPOTENCY_TTL_SECONDS))

    def _actor(self, actor: str | None) -> str:
        return actor or current_domain.config.get("custom", {}).get("default_actor", "system")

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    def get_order(self, order_id: str) -> Order:
        return self._load(current_domain.repository_for(Order), order_id)

    def check_inventory(self, order_id: str) -> InventoryCheck:
        """Report whether the order could ship with the stock available right now."""
        order = self.get_order(order_id)
        return check_inventory(order, self.stock)

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    def request_transition(
        self,
        order_id: str,
        target_status: OrderStatus | str,
        reason: str | None = None,
        note: str | None = None,
        notify_customer: bool = False,
        idempotency_key: str | None = None,
        actor: str | None = None,
        **details,
    ) -> Order:
        """Move an order to ``target_status``.

        Shipping, completion and refund targets are routed through the
        dispatcher, delivery confirmation and refund calculator. ``details``
        carries what those need: ``carrier``, ``tracking_number``,
        ``estimated_delivery`` for shipping; ``items`` for a partial refund.
        For refund targets ``reason`` must be a refund reason code.
        """
        try:
            target = OrderStatus(target_status)
        except ValueError:
            # A missing order is reported before a bad target
            order = self.get_order(order_id)
            raise InvalidTransition(order.status, str(target_status), f"Unknown status {target_status!r}") from None

        if target == OrderStatus.SHIPPED:
            return self.dispatch(
                order_id,
                tracking_number=details.get("tracking_number"),
                carrier=details.get("carrier"),
                estimated_delivery=details.get("estimated_delivery"),
                notes=details.get("notes") or note,
                notify_customer=notify_customer,
                idempotency_key=idempotency_key,
                actor=actor,
                reason=reason,
            )
        if target == OrderStatus.COMPLETED:
            return self.confirm_delivery(
                order_id,
                delivered_at=details.get("delivered_at"),
                reason=reason,
                note=note,
                notify_customer=notify_customer,
                idempotency_key=idempotency_key,
                actor=actor,
            )
        if target in (OrderStatus.REFUNDED, OrderStatus.PARTIALLY_REFUNDED):
            refund_type = RefundType.FULL if target == OrderStatus.REFUNDED else RefundType.PARTIAL
            return self.request_refund(
                order_id,
                refund_type=refund_type,
                reason=reason,
                items=details.get("items"),
                note=note,
                notify_customer=notify_customer,
                idempotency_key=idempotency_key,
                actor=actor,
            )

        actor = self._actor(actor)

        def change(order: Order):
            if target == OrderStatus.PROCESSING:
                record = order.start_processing(reason, note=note, actor=actor, notify_customer=notify_customer)
            elif target == OrderStatus.CANCELLED:
                record = order.cancel(reason, note=note, actor=actor, notify_customer=notify_customer)
            else:
                raise InvalidTransition(order.status, target.value)

            if notify_customer:
                return "order_status_changed", _status_payload(order, record)
            return None

        return self._execute(order_id, f"status:{target.value}", idempotency_key, change)

    def dispatch(
        self,
        order_id: str,
        tracking_number: str | None,
        carrier: str | None,
        estimated_delivery: datetime | None = None,
        notes: str | None = None,
        notify_customer: bool = False,
        idempotency_key: str | None = None,
        actor: str | None = None,
        reason: str | None = None,
    ) -> Order:
        """Record carrier details and ship a processing order.

        Checks run in a fixed order: shipping details, transition legality,
        then the inventory guard. The guard runs on every attempt since
        stock may have changed since a previous one.
        """
        missing = [
            name
            for name, value in (("tracking_number", tracking_number), ("carrier", carrier))
            if not (value or "").strip()
        ]
        if missing:
            raise MissingShippingDetails(missing)

        actor = self._actor(actor)
        tracking_number = tracking_number.strip()
        carrier = carrier.strip()

        def change(order: Order):
            if not order.can_transition_to(OrderStatus.SHIPPED):
                raise InvalidTransition(order.status, OrderStatus.SHIPPED.value)

            inventory = check_inventory(order, self.stock)
            if not inventory.can_ship:
                raise InsufficientInventory(inventory.issues)

            record = order.ship(
                carrier=carrier,
                tracking_number=tracking_number,
                estimated_delivery=estimated_delivery,
                notes=notes,
                reason=reason,
                actor=actor,
                notify_customer=notify_customer,
            )
            if notify_customer:
                payload = _status_payload(order, record)
                payload.update(
                    carrier=carrier,
                    tracking_number=tracking_number,
                    estimated_delivery=estimated_delivery.isoformat() if estimated_delivery else None,
                )
                return "order_shipped", payload
            return None

        return self._execute(order_id, f"status:{OrderStatus.SHIPPED.value}", idempotency_key, change)

    def confirm_delivery(
        self,
        order_id: str,
        delivered_at: datetime | None = None,
        reason: str | None = None,
        note: str | None = None,
        notify_customer: bool = False,
        idempotency_key: str | None = None,
        actor: str | None = None,
    ) -> Order:
        """Complete a shipped order once the carrier confirms delivery."""
        actor = self._actor(actor)

        def change(order: Order):
            record = order.complete(
                reason=reason,
                note=note,
                actor=actor,
                notify_customer=notify_customer,
                delivered_at=delivered_at,
            )
            if notify_customer:
                return "order_status_changed", _status_payload(order, record)
            return None

        return self._execute(order_id, f"status:{OrderStatus.COMPLETED.value}", idempotency_key, change)

    def request_refund(
        self,
        order_id: str,
        refund_type: RefundType | str,
        reason: RefundReason | str,
        items: list[dict] | None = None,
        note: str | None = None,
        notify_customer: bool = False,
        idempotency_key: str | None = None,
        actor: str | None = None,
    ) -> Order:
        """Refund the remaining balance (full) or selected units (partial)."""
        refund_type = _coerce(RefundType, refund_type, "refund_type")
        reason = _coerce(RefundReason, reason, "reason")
        if refund_type == RefundType.FULL:
            request = RefundRequest.full(reason)
        else:
            request = RefundRequest.partial(reason, items or [])

        actor = self._actor(actor)

        def change(order: Order):
            target = OrderStatus.REFUNDED if refund_type == RefundType.FULL else OrderStatus.PARTIALLY_REFUNDED
            if not order.can_transition_to(target):
                raise InvalidTransition(order.status, target.value)

            computation = compute_refund(order, request)
            refund = order.apply_refund(
                computation,
                refund_type=refund_type,
                reason=reason,
                note=note,
                actor=actor,
                notify_customer=notify_customer,
            )
            logger.info(
                "Refund applied",
                order_id=str(order.id),
                transaction_id=refund.transaction_id,
                amount=refund.amount,
                status=order.status,
            )
            if notify_customer:
                payload = _status_payload(order, order.audit_trail[-1])
                payload.update(
                    transaction_id=refund.transaction_id,
                    amount=refund.amount,
                    refunded_amount=order.refunded_amount,
                )
                return "order_refunded", payload
            return None

        return self._execute(order_id, f"refund:{refund_type.value}", idempotency_key, change)

    # -------------------------------------------------------------------
    # Unit of Work plumbing
    # -------------------------------------------------------------------
    def _load(self, repo, order_id: str) -> Order:
        try:
            return repo.get(order_id)
        except ObjectNotFoundError:
            raise OrderNotFound(order_id) from None

    @use_case
    def _apply(self, order_id: str, fingerprint: str, idempotency_key: str | None, change: Change):
        repo = current_domain.repository_for(Order)
        order = self._load(repo, order_id)

        if idempotency_key:
            processed = order.find_processed_request(idempotency_key, self.idempotency_ttl)
            if processed is not None:
                if processed.fingerprint != fingerprint:
                    raise IdempotencyConflict(idempotency_key, processed.fingerprint, fingerprint)
                logger.info(
                    "Replaying idempotent request",
                    order_id=str(order.id),
                    idempotency_key=idempotency_key,
                    resulting_status=processed.resulting_status,
                )
                return order, None

        notification = change(order)
        if idempotency_key:
            order.remember_request(idempotency_key, fingerprint, self.idempotency_ttl)
        repo.add(order)
        return order, notification

    def _execute(self, order_id: str, fingerprint: str, idempotency_key: str | None, change: Change) -> Order:
        bind_order_context(order_id, operation=fingerprint)
        try:
            try:
                order, notification = self._apply(order_id, fingerprint, idempotency_key, change)
            except ExpectedVersionError as exc:
                logger.warning("Concurrent modification rejected", order_id=str(order_id), error=str(exc))
                raise ConcurrentModification(order_id) from exc

            logger.info("Order updated", order_id=str(order.id), status=order.status)
            if notification is not None:
                self._notify(order, *notification)
            return order
        finally:
            clear_context()

    def _notify(self, order: Order, kind: str, payload: dict) -> None:
        """Hand a notification to the notifier; failures are logged, never raised."""
        try:
            result = self.notifier.enqueue(str(order.id), kind, payload)
        except Exception as exc:
            logger.error("Customer notification failed", order_id=str(order.id), kind=kind, error=str(exc))
            return

        if result.get("status") != "queued":
            logger.error(
                "Customer notification failed",
                order_id=str(order.id),
                kind=kind,
                error=result.get("error", "Unknown enqueue error"),
            )
            return

        logger.info(
            "Customer notification queued",
            order_id=str(order.id),
            kind=kind,
            notification_id=result.get("notification_id"),
        )
