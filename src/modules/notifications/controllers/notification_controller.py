# modules/notifications/controllers/notification_controller.py
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from typing import List, Optional

from database import get_db
from modules.auth.controllers.auth_controller import get_current_user
from modules.documents.models.user import User
from modules.notifications.models.notification import NotificationKind
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.notification_service import NotificationService
from modules.notifications.models.schemas import NotificationResponse, UnreadCountResponse, MarkAllReadResponse

router = APIRouter()


def get_notification_service(db: Session = Depends(get_db)) -> NotificationService:
    repo = NotificationRepository(db)
    return NotificationService(repo)


@router.get(
    "/me",
    response_model=List[NotificationResponse],
    summary="Notifications de l'utilisateur connecté"
)
def list_notifications(
    unread_only: bool = Query(False),
    kind: Optional[NotificationKind] = Query(None, description="Filtrer par type de notification"),
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return service.get_notifications(current_user.id, unread_only, kind)


@router.get(
    "/me/unread-count",
    response_model=UnreadCountResponse,
    summary="Nombre de notifications non lues"
)
def unread_count(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return UnreadCountResponse(user_id=current_user.id, unread=service.count_unread(current_user.id))


@router.patch(
    "/me/read-all",
    response_model=MarkAllReadResponse,
    summary="Marquer toutes les notifications comme lues"
)
def mark_all_notifications_as_read(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return MarkAllReadResponse(user_id=current_user.id, updated=service.mark_all_as_read(current_user.id))


@router.patch(
    "/{notification_id}/read",
    response_model=NotificationResponse,
    summary="Marquer une notification comme lue"
)
def mark_notification_as_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    notif = service.mark_as_read(notification_id, current_user.id)
    if notif is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Notification introuvable"
        )
    return notif
