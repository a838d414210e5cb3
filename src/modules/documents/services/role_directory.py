import logging
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from modules.documents.models.user import User, UserRole
from modules.documents.services.errors import DependencyFailureError

logger = logging.getLogger(__name__)


class RoleDirectory:
    """
    Resolves roles to the active users holding them.

    Results are ordered by ascending user id so that picking the first entry is a
    stable tie-break when several users share a role.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def resolve_active_users_by_role(self, role: UserRole) -> List[int]:
        try:
            rows = (
                self.db.query(User.id)
                .filter(User.role == role, User.is_active.is_(True))
                .order_by(User.id.asc())
                .all()
            )
        except SQLAlchemyError as e:
            logger.exception("Role directory lookup failed for role %s", role.value)
            raise DependencyFailureError(f"Role directory unavailable: {e}") from e
        return [row[0] for row in rows]

    def resolve_signer(self, role: UserRole) -> Optional[int]:
        users = self.resolve_active_users_by_role(role)
        return users[0] if users else None

    def get_user(self, user_id: int) -> Optional[User]:
        try:
            return self.db.get(User, user_id)
        except SQLAlchemyError as e:
            logger.exception("Role directory lookup failed for user %s", user_id)
            raise DependencyFailureError(f"Role directory unavailable: {e}") from e
