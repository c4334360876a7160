"""
Notification endpoints (poll-based delivery of cache events)
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_current_owner
from schemas import NotificationOut
from services.notification_service import list_notifications, mark_read

router = APIRouter()


class MarkReadRequest(BaseModel):
    ids: Optional[List[int]] = None


@router.get("/notifications", response_model=List[NotificationOut])
def get_notifications(
    unread_only: bool = Query(False),
    limit: int = Query(50, ge=1, le=500),
    owner: str = Depends(get_current_owner),
    db: Session = Depends(get_db),
):
    return [
        {
            "id": n.id,
            "event_type": n.event_type,
            "subject": n.subject,
            "payload": n.payload,
            "created_at": n.created_at,
            "read_at": n.read_at,
        }
        for n in list_notifications(db, owner, unread_only=unread_only, limit=limit)
    ]


@router.post("/notifications/read")
def read_notifications(
    request: MarkReadRequest,
    owner: str = Depends(get_current_owner),
    db: Session = Depends(get_db),
):
    """Mark the given notifications (or all unread ones) as read"""
    return {"updated": mark_read(db, owner, request.ids)}
