"""GET /v1/notifications - in-app notifications for a user"""

from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from loan_engine.api.v1.schemas import NotificationSchema
from loan_engine.infrastructure.database.session import get_db
from loan_engine.services.notifications import NotificationService

router = APIRouter()


@router.get("/notifications", response_model=List[NotificationSchema])
def list_notifications(
    user_id: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    """Newest first"""
    return NotificationService(db).list_for_user(user_id, limit=limit)
