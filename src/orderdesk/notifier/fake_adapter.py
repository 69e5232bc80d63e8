"""Fake notifier: records queued notifications for test assertions."""

from uuid import uuid4

from orderdesk.notifier.port import Notifier


class FakeNotifier(Notifier):
    """Notifier that keeps queued notifications in memory."""

    def __init__(self):
        self.queued: list[dict] = []
        self.should_succeed = True
        self.failure_reason = "Notification queue unavailable"
        self.raise_on_enqueue = False

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Notification queue unavailable",
        raise_on_enqueue: bool = False,
    ):
        """Configure the fake notifier behavior for testing."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.raise_on_enqueue = raise_on_enqueue

    def enqueue(self, order_id: str, kind: str, payload: dict) -> dict:
        if self.raise_on_enqueue:
            raise ConnectionError(self.failure_reason)

        if not self.should_succeed:
            return {
                "notification_id": None,
                "status": "failed",
                "error": self.failure_reason,
            }

        notification_id = f"ntf-{uuid4().hex[:12]}"
        self.queued.append(
            {
                "notification_id": notification_id,
                "order_id": str(order_id),
                "kind": kind,
                "payload": payload,
            }
        )
        return {"notification_id": notification_id, "status": "queued"}

    def for_order(self, order_id: str) -> list[dict]:
        return [n for n in self.queued if n["order_id"] == str(order_id)]

    def reset(self):
        """Clear queued notifications (useful between tests)."""
        self.queued.clear()
        self.should_succeed = True
        self.raise_on_enqueue = False
