"""
Best-effort outbound messages.

Messages are handed to a small thread pool and delivered at most once. A
failed delivery is logged and dropped; it never reaches the request that
queued it.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Optional

from utils import emailer, sms
from utils.logging_context import get_request_id, set_request_id

logger = logging.getLogger(__name__)

EMAIL = "email"
SMS = "sms"


@dataclass(frozen=True)
class OutboundMessage:
    channel: str  # EMAIL or SMS
    to: str
    body: str
    subject: Optional[str] = None
    kind: Optional[str] = None
    booking_number: Optional[str] = None


def _transport(message: OutboundMessage):
    if message.channel == EMAIL:
        return emailer.send_email(message.to, message.subject or "", message.body)
    if message.channel == SMS:
        return sms.send_sms(message.to, message.body)
    return False, f"Unknown channel {message.channel!r}"


class Notifier:
    def __init__(self, app=None):
        self.app = None
        self.enabled = True
        self._executor = None
        self._pending = set()
        self._lock = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        self.enabled = app.config.get("NOTIFICATIONS_ENABLED", True)
        self._executor = ThreadPoolExecutor(
            max_workers=app.config.get("NOTIFIER_MAX_WORKERS", 2),
            thread_name_prefix="notify_",
        )
        app.extensions["notifier"] = self

    def enqueue(self, messages) -> int:
        """Queue messages for delivery and return how many were queued."""
        messages = list(messages)
        if not messages:
            return 0
        if not self.enabled:
            logger.debug("Notifications disabled; dropping %d message(s)", len(messages))
            return 0

        for message in messages:
            # carry the request id into the worker's log records
            future = self._executor.submit(self._deliver, message, get_request_id())
            with self._lock:
                self._pending.add(future)
            future.add_done_callback(self._forget)
        return len(messages)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for outstanding deliveries. Returns False if some are still running."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_pending: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait_for_pending)

    def _forget(self, future) -> None:
        with self._lock:
            self._pending.discard(future)

    def _deliver(self, message: OutboundMessage, request_id: str) -> None:
        set_request_id(request_id)
        try:
            with self.app.app_context():
                sent, detail = _transport(message)
        except Exception:
            logger.exception(
                "Delivery of %s %s for %s failed; message dropped",
                message.kind, message.channel, message.booking_number,
            )
            return

        if sent:
            logger.info("Sent %s %s for %s", message.kind, message.channel, message.booking_number)
        else:
            logger.warning(
                "Skipped %s %s for %s: %s",
                message.kind, message.channel, message.booking_number, detail,
            )
