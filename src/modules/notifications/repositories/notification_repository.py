from typing import List, Dict, Optional
from sqlalchemy import update
from sqlalchemy.orm import Session

from modules.notifications.models.notification import Notification, NotificationKind

class NotificationRepository:
    def __init__(self, db_session: Session):
        self.db = db_session

    def save(self, notification: Notification) -> Notification:
        self.db.add(notification)
        self.db.commit()
        self.db.refresh(notification)
        return notification

    def get_for_user(self, notification_id: int, user_id: int) -> Optional[Notification]:
        """None when the notification does not exist or belongs to someone else"""
        notif = self.db.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            return None
        return notif

    def find_by_user_id(
        self,
        user_id: int,
        unread_only: bool = False,
        kind: Optional[NotificationKind] = None
    ) -> List[Notification]:
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.read.is_(False))
        if kind is not None:
            query = query.filter(Notification.kind == kind)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    def count_unread(self, user_id: int) -> int:
        return (
            self.db
            .query(Notification)
            .filter(Notification.user_id == user_id, Notification.read.is_(False))
            .count()
        )

    def mark_all_read(self, user_id: int) -> int:
        result = self.db.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount

    def update(self, notification_id: int, data: Dict) -> Optional[Notification]:
        notif = self.db.get(Notification, notification_id)
        if not notif:
            return None
        for field, value in data.items():
            setattr(notif, field, value)
        self.db.commit()
        self.db.refresh(notif)
        return notif
