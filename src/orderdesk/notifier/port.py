"""Notifier port: abstract interface for enqueueing customer notifications.

Enqueueing is fire-and-forget from the order desk's point of view: a
failure is reported back in the result, logged by the caller, and never
undoes the order change that triggered it.
"""

from abc import ABC, abstractmethod


class Notifier(ABC):
    """Abstract interface for notifier adapters."""

    @abstractmethod
    def enqueue(self, order_id: str, kind: str, payload: dict) -> dict:
        """Queue a notification about ``order_id``.

        Returns:
            dict with keys: status ("queued" or "failed"), notification_id, error
        """
        ...
