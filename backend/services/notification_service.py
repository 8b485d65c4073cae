from __future__ import annotations

import logging
from typing import Callable, Protocol

from sqlalchemy.orm import Session

from core.context import ROLE_COORDINATOR
from models.notification import Notification
from models.user import User

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def dispatch(self, title: str, body: str, data: dict) -> None: ...


class StoreNotificationDispatcher:
    """Writes one in-app notification per coordinator."""

    def __init__(self, session_factory: Callable[[], Session], notification_type: str = "system_notification"):
        self.session_factory = session_factory
        self.notification_type = notification_type

    def dispatch(self, title: str, body: str, data: dict) -> None:
        with self.session_factory() as db:
            coordinators = db.query(User.id).filter(User.role == ROLE_COORDINATOR).all()
            db.add_all(
                [
                    Notification(user_id=uid, title=title, body=body, type=self.notification_type, data=data)
                    for (uid,) in coordinators
                ]
            )
            db.commit()
        logger.info("Dispatched %r to %d coordinator(s)", title, len(coordinators))


def notify_safely(dispatcher: NotificationDispatcher | None, title: str, body: str, data: dict) -> bool:
    """Fire-and-forget: a dispatcher failure is logged and reported as False, never raised."""
    if dispatcher is None:
        return False
    try:
        dispatcher.dispatch(title, body, data)
        return True
    except Exception:
        logger.exception("Notification dispatch failed: %s", title)
        return False
