# modules/notifications/services/notification_service.py
import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from modules.notifications.models.notification import Notification, NotificationKind
from modules.notifications.repositories.notification_repository import NotificationRepository

logger = logging.getLogger(__name__)

KIND_TITLES = {
    NotificationKind.SIGNATURE_REQUIRED: "Signature requise",
    NotificationKind.SIGNATURE_REMINDER: "Rappel de signature",
    NotificationKind.DOCUMENT_REJECTED: "Document rejeté",
    NotificationKind.DOCUMENT_COMPLETED: "Document finalisé disponible",
}

class NotificationTemplate:
    kind: NotificationKind

    def __init__(self, user_id: int, document_id: int, message: str):
        self.user_id = user_id
        self.document_id = document_id
        self.message = message

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'kind': self.kind,
            'document_id': self.document_id,
            'message': self.message
        }

class SignatureRequiredNotification(NotificationTemplate):
    kind = NotificationKind.SIGNATURE_REQUIRED

    def __init__(self, user_id: int, document_id: int, document_title: str):
        message = f'Le document "{document_title}" attend votre signature.'
        super().__init__(user_id, document_id, message)

class SignatureReminderNotification(NotificationTemplate):
    kind = NotificationKind.SIGNATURE_REMINDER

    def __init__(self, user_id: int, document_id: int, document_title: str, waiting_hours: int):
        message = (
            f'Le document "{document_title}" attend votre signature '
            f'depuis plus de {waiting_hours} heures.'
        )
        super().__init__(user_id, document_id, message)

class DocumentRejectedNotification(NotificationTemplate):
    kind = NotificationKind.DOCUMENT_REJECTED

    def __init__(self, user_id: int, document_id: int, document_title: str, reason: str):
        message = f'Le document "{document_title}" a été rejeté. Motif : {reason}'
        super().__init__(user_id, document_id, message)

class DocumentCompletedNotification(NotificationTemplate):
    kind = NotificationKind.DOCUMENT_COMPLETED

    def __init__(self, user_id: int, document_id: int, document_title: str):
        message = f'Le document "{document_title}" est maintenant disponible en téléchargement PDF.'
        super().__init__(user_id, document_id, message)

class NotificationService:
    def __init__(self, repository: NotificationRepository):
        self.notification_repository = repository

    def notify(
        self,
        user_id: int,
        kind: NotificationKind,
        document_id: Optional[int],
        message: str
    ) -> Optional[Notification]:
        """
        Fire-and-forget delivery: a failure is logged and never propagated, so the
        workflow transition that triggered it stays committed.
        """
        notif = Notification(
            user_id=user_id,
            kind=kind,
            title=KIND_TITLES[kind],
            message=message,
            document_id=document_id
        )
        try:
            return self.notification_repository.save(notif)
        except SQLAlchemyError:
            self.notification_repository.db.rollback()
            logger.exception(
                "Could not deliver %s notification to user %s for document %s",
                kind.value, user_id, document_id
            )
            return None

    def get_notifications(
        self,
        user_id: int,
        unread_only: bool = False,
        kind: Optional[NotificationKind] = None
    ) -> List[Notification]:
        return self.notification_repository.find_by_user_id(user_id, unread_only, kind)

    def count_unread(self, user_id: int) -> int:
        return self.notification_repository.count_unread(user_id)

    def mark_as_read(self, notification_id: int, user_id: int) -> Optional[Notification]:
        """Marks one of the user's notifications as read; None if it is not theirs."""
        if self.notification_repository.get_for_user(notification_id, user_id) is None:
            return None
        return self.notification_repository.update(notification_id, {'read': True})

    def mark_all_as_read(self, user_id: int) -> int:
        count = self.notification_repository.mark_all_read(user_id)
        logger.info("%d notification(s) marked as read for user %s", count, user_id)
        return count
