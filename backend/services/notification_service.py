"""
Notification Service

Default INotificationSink: stores notifications in the database so the
client can poll them. Delivery is fire-and-forget; a failure to record a
notification is logged and never interrupts the transcode that raised it.
"""
import json
from datetime import datetime
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from database import SessionLocal
from models import Notification
from services.interfaces import INotificationSink

logger = logging.getLogger(__name__)


class DatabaseNotificationSink(INotificationSink):
    """Writes notifications to the notifications table"""

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self.session_factory = session_factory

    def notify(self, owner: str, event_type: str, subject: str, payload: Optional[Dict[str, Any]] = None) -> None:
        db = self.session_factory()
        try:
            db.add(Notification(
                owner=owner,
                event_type=event_type,
                subject=subject,
                payload_json=json.dumps(payload or {}),
            ))
            db.commit()
            logger.info(f"🔔 Notified {owner}: {event_type} {subject}")
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to record notification {event_type} for {owner}: {e}", exc_info=True)
        finally:
            db.close()


def list_notifications(db: Session, owner: str, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    query = db.query(Notification).filter(Notification.owner == owner)
    if unread_only:
        query = query.filter(Notification.read_at.is_(None))
    return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(db: Session, owner: str, notification_ids: Optional[List[int]] = None) -> int:
    """Mark an owner's notifications read (all unread ones when no ids are given)"""
    query = db.query(Notification).filter(
        Notification.owner == owner,
        Notification.read_at.is_(None),
    )
    if notification_ids:
        query = query.filter(Notification.id.in_(notification_ids))
    count = query.update({Notification.read_at: datetime.utcnow()}, synchronize_session=False)
    db.commit()
    return count
