# classroom-bazaar/app/api/v1/endpoints/notification.py
"""
通知API: ミステリーボックスの開封結果などを受け取る
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from app.db.database import get_db
from app.db import models
from app.api.v1.endpoints.users import get_current_user
from app.schemas.notification import NotificationListResponse, NotificationReadResponse

router = APIRouter(prefix="/notifications")


def _unread_query(db: Session, user_id: int):
    return db.query(models.Notification).filter(
        models.Notification.user_id == user_id,
        models.Notification.is_read == False,  # noqa: E712
    )


@router.get("", response_model=NotificationListResponse, summary="通知一覧取得")
def get_notifications(
    type: str | None = Query(None, description="例: mystery_box_opened"),
    include_read: bool = Query(False, description="既読も含めるか"),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """新しい順に返す（デフォルトは未読のみ）"""
    if include_read:
        query = db.query(models.Notification).filter(
            models.Notification.user_id == current_user.id
        )
    else:
        query = _unread_query(db, current_user.id)
    if type:
        query = query.filter(models.Notification.type == type)

    notifications = (
        query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .limit(limit)
        .all()
    )
    return NotificationListResponse(
        notifications=notifications,
        unread_count=_unread_query(db, current_user.id).count(),
    )


@router.post(
    "/{notification_id}/read",
    response_model=NotificationReadResponse,
    summary="通知を既読にする",
)
def mark_as_read(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    notification = db.get(models.Notification, notification_id)
    # 他人の通知は存在しないものとして扱う
    if notification is None or notification.user_id != current_user.id:
        raise HTTPException(status.HTTP_404_NOT_FOUND, detail="Notification not found")

    if not notification.is_read:
        notification.is_read = True
        db.commit()

    return NotificationReadResponse(
        id=notification_id,
        unread_count=_unread_query(db, current_user.id).count(),
    )
