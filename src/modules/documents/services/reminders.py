import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from modules.documents.repositories.document_repository import DocumentRepository
from modules.notifications.repositories.notification_repository import NotificationRepository
from modules.notifications.services.notification_service import (
    NotificationService,
    SignatureReminderNotification,
)

logger = logging.getLogger(__name__)

def send_signature_reminders(
    session: Session,
    after_hours: int,
    notifier=None,
    now: Optional[datetime] = None
) -> int:
    """Reminds current signers of documents waiting on them for more than ``after_hours``."""
    cutoff = (now or datetime.utcnow()) - timedelta(hours=after_hours)
    notifier = notifier or NotificationService(NotificationRepository(session))

    documents = DocumentRepository(session).find_pending_since(cutoff)
    for doc in documents:
        template = SignatureReminderNotification(doc.current_signer_id, doc.id, doc.title, after_hours)
        notifier.notify(**template.to_dict())

    logger.info("Signature reminder sweep: %d document(s) waiting since before %s", len(documents), cutoff)
    return len(documents)
