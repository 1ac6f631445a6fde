# goldshop/services/notifications.py
"""Best-effort admin notifications.

Callers queue notifications while doing their primary work and dispatch
them only after that work is committed. Dispatch never raises: a failed
insert or e-mail is logged and dropped, and the primary operation stands.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
import logging

from flask import current_app

from ..extensions import db
from ..models.notification import AdminNotification
from ..retry import retry_fixed, RetryExhausted
from .email_service import email_admin_alert

log = logging.getLogger(__name__)

# one immediate try, one short pause, then give up
DISPATCH_DELAYS = (0.0, 0.25)


@dataclass
class PendingNotification:
    type: str
    title: str
    message: str
    order_id: Optional[str] = None
    product_id: Optional[int] = None

    def deep_link(self) -> Optional[str]:
        base = (current_app.config.get("EXTERNAL_BASE_URL") or "").rstrip("/")
        if self.order_id:
            return f"{base}/admin/orders/{self.order_id}"
        if self.product_id:
            return f"{base}/admin/products/{self.product_id}"
        return None


class Notifier:
    def __init__(self, delays=DISPATCH_DELAYS, sleep=None):
        self.pending: list[PendingNotification] = []
        self.delays = delays
        self.sleep = sleep

    def add(self, type: str, title: str, message: str, *, order_id=None, product_id=None):
        self.pending.append(PendingNotification(type, title, message, order_id, product_id))
        return self

    def dispatch(self) -> int:
        """Send everything queued so far. Returns how many rows were stored."""
        stored = 0
        queued, self.pending = self.pending, []
        for note in queued:
            if self._store(note):
                stored += 1
            self._email(note)
        return stored

    def _store(self, note: PendingNotification) -> bool:
        def _insert():
            try:
                db.session.add(AdminNotification(
                    type=note.type,
                    title=note.title,
                    message=note.message,
                    order_id=note.order_id,
                    product_id=note.product_id,
                ))
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise

        kwargs = {"label": f"notification {note.type}"}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        try:
            retry_fixed(_insert, self.delays, **kwargs)
            return True
        except RetryExhausted as e:
            log.error("Dropping %s notification for order=%s product=%s: %s",
                      note.type, note.order_id, note.product_id, e.last_error)
            return False

    def _email(self, note: PendingNotification):
        try:
            email_admin_alert(note.title, note.message, note.deep_link())
        except Exception as e:
            log.warning("Admin alert e-mail failed for %s: %s", note.type, e)


def notify_now(type: str, title: str, message: str, **ctx) -> int:
    return Notifier().add(type, title, message, **ctx).dispatch()
