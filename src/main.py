import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from create_tables import create_tables
from database import SessionLocal
from settings import get_settings

from modules.documents.job import start_reminder_job
from modules.documents.models import User, UserRole
from modules.documents.services.workflow_templates import get_workflow_templates
from modules.auth.services.auth_service import AuthService
from modules.notifications.controllers.notification_controller import router as notification_router
from modules.documents.controllers.document_controller import router as document_router
from modules.documents.controllers.signature_controller import router as signature_router
from modules.auth.controllers.auth_controller import router as auth_router

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# (first_name, last_name, email, password, role)
DEMO_USERS = [
    ("Service", "Académique", "saf@universite.cd", "saf123", UserRole.SAF),
    ("Paul", "Appariteur", "appariteur@universite.cd", "app123", UserRole.APPARITEUR),
    ("Luc", "Libraire", "libraire@universite.cd", "lib123", UserRole.LIBRAIRE),
    ("Claire", "Comptable", "comptable@universite.cd", "compta123", UserRole.COMPTABLE),
    ("Bernard", "Bibliothécaire", "biblio@universite.cd", "biblio123", UserRole.BIBLIOTHECAIRE),
    ("Denise", "Doyen", "doyen@universite.cd", "doyen123", UserRole.DOYEN),
    ("Serge", "Sgac", "sgac@universite.cd", "sgac123", UserRole.SGAC),
]

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting document workflow service")
    create_tables()
    templates = get_workflow_templates()
    logger.info("Workflow templates loaded for %s", [t.value for t in templates.document_types()])
    if settings.seed_demo_data:
        _seed_demo_users()
    scheduler = start_reminder_job(settings) if settings.reminders_enabled else None
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info("Document workflow service stopped")

def _seed_demo_users():
    """Creates one demo account per workflow role on an empty database."""
    with SessionLocal() as session:
        if session.query(User).count() > 0:
            logger.info("Demo users already present")
            return

        session.add_all([
            User(
                first_name=first_name,
                last_name=last_name,
                email=email,
                password_hash=AuthService.get_password_hash(password),
                role=role,
                is_active=True
            )
            for first_name, last_name, email, password, role in DEMO_USERS
        ])
        session.commit()
        logger.info("Demo users created: %s", [email for _, _, email, _, _ in DEMO_USERS])

app = FastAPI(
    title="Gestion documentaire universitaire",
    description="API de circuits de signature séquentiels pour les documents administratifs",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_origins_list(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=[
        "Accept",
        "Accept-Language",
        "Content-Language",
        "Content-Type",
        "Authorization",
        "X-Requested-With",
        "Origin",
    ],
    max_age=86400,
)
# Routers
app.include_router(auth_router)
app.include_router(notification_router, prefix="/notifications", tags=["notifications"])
app.include_router(document_router, prefix="/documents", tags=["documents"])
app.include_router(signature_router, prefix="/documents", tags=["workflow"])

if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
