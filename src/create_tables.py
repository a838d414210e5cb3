# create_tables.py
import logging

from database import engine, Base
# Models must be imported so they register with Base
from modules.documents.models.user import User
from modules.documents.models.document import Document
from modules.documents.models.signature import SignatureStep
from modules.notifications.models.notification import Notification

logger = logging.getLogger(__name__)

def create_tables(bind=engine):
    """Creates every table registered on Base"""
    logger.info("Creating tables: %s", list(Base.metadata.tables.keys()))
    Base.metadata.create_all(bind=bind)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_tables()
