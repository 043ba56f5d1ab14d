from dataclasses import dataclass, field

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from defense_eval.core.errors import Unauthorized
from defense_eval.core.rbac import ADMIN, STAFF_ROLES, STUDENT, get_user_role_names
from defense_eval.db.session import get_db
from defense_eval.models.user import User


@dataclass
class Actor:
    """The requesting user together with the role names resolved for it."""

    user: User
    roles: set[str] = field(default_factory=set)

    @property
    def id(self):
        return self.user.id

    @property
    def is_admin(self) -> bool:
        return ADMIN in self.roles

    @property
    def is_staff(self) -> bool:
        return bool(self.roles & STAFF_ROLES)

    @property
    def is_student(self) -> bool:
        return STUDENT in self.roles


def get_current_user(
    x_user_email: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """
    DEV AUTH: pass X-User-Email header to simulate logged-in user.
    Example: X-User-Email: admin@local.test
    """
    if not x_user_email:
        raise Unauthorized("Missing X-User-Email header (dev auth)")

    user = db.query(User).filter(User.email == x_user_email.strip().lower()).one_or_none()
    if not user or not user.is_active:
        raise Unauthorized("Invalid or inactive user")
    return user


def get_current_actor(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Actor:
    return Actor(user=user, roles=get_user_role_names(db, user))
