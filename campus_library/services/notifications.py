"""Best-effort notification dispatch (SMS/email gateway).

Ledger services call ``notifier.notify(user_id, kind, payload)`` only after
their transaction has committed. Delivery failures are logged and dropped;
they never reach the caller and are never retried.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import BackgroundTasks

from campus_library.core.config import settings

logger = logging.getLogger(__name__)

LOAN_CREATED = "loan_created"
LOAN_RETURNED = "loan_returned"
LOAN_OVERDUE = "loan_overdue"
LOAN_DUE_SOON = "loan_due_soon"
RENEWAL_REQUESTED = "renewal_requested"
RENEWAL_DECISION = "renewal_decision"
RESERVATION_AVAILABLE = "reservation_available"


class NotificationDispatcher:
    """Posts notifications to a webhook gateway, or only logs them when none is configured."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None):
        self.url = settings.notify_url if url is None else url
        self.timeout = settings.notify_timeout if timeout is None else timeout

    def notify(self, user_id: int, kind: str, payload: Dict[str, Any]) -> bool:
        if not self.url:
            logger.info(f"Notification {kind} for user {user_id}: {payload}")
            return True
        try:
            response = httpx.post(self.url,
                                  json={"user_id": user_id, "kind": kind, "payload": payload},
                                  timeout=self.timeout)
            response.raise_for_status()
        except Exception as exc:
            logger.warning(f"Notification {kind} for user {user_id} failed: {exc}")
            return False
        logger.info(f"Notification {kind} delivered for user {user_id}")
        return True


class BackgroundNotifier:
    """Defers delivery until the HTTP response has been sent."""

    def __init__(self, dispatcher: NotificationDispatcher, background_tasks: BackgroundTasks):
        self.dispatcher = dispatcher
        self.background_tasks = background_tasks

    def notify(self, user_id: int, kind: str, payload: Dict[str, Any]) -> None:
        self.background_tasks.add_task(self.dispatcher.notify, user_id, kind, payload)


dispatcher = NotificationDispatcher()


def get_notifier(background_tasks: BackgroundTasks):
    return BackgroundNotifier(dispatcher, background_tasks)
