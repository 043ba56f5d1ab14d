from fastapi import Depends
from sqlalchemy.orm import Session

from defense_eval.core.errors import Forbidden
from defense_eval.db.session import get_db
from defense_eval.models.user import User
from defense_eval.models.rbac import Role, UserRole

ADMIN = "admin"
STAFF = "staff"
PANELIST = "panelist"
STUDENT = "student"

ROLE_NAMES = [ADMIN, STAFF, PANELIST, STUDENT]
# panelists evaluate exactly like staff
STAFF_ROLES = {STAFF, PANELIST}


def get_user_role_names(db: Session, user: User) -> set[str]:
    rows = (
        db.query(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user.id)
        .all()
    )
    return {r[0].lower() for r in rows}


def assert_roles(role_names: set[str], *allowed: str) -> None:
    allowed_set = set(allowed)
    if not (role_names & allowed_set):
        raise Forbidden(f"Forbidden. Requires one of: {sorted(allowed_set)}")


def require_roles(*required: str):
    """
    Usage:
      Depends(require_roles("admin"))
      Depends(require_roles("admin", "staff"))  # any-of
    """
    from defense_eval.core.security import Actor, get_current_actor

    def _dep(actor: Actor = Depends(get_current_actor)) -> Actor:
        assert_roles(actor.roles, *required)
        return actor

    return _dep
