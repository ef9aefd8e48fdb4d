"""User lookups and creation used by the authentication use cases."""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from signwise.models import User
from signwise.services.errors import Conflict, NotFound


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore:
    """Thin persistence wrapper over the users table. Never commits; callers own the transaction."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def find_by_email(self, db: Session, email: str) -> User | None:
        return db.query(User).filter(User.email == normalize_email(email)).first()

    def find_by_id(self, db: Session, user_id: int) -> User | None:
        return db.query(User).filter(User.id == user_id).first()

    def get(self, db: Session, user_id: int) -> User:
        """Return the user or raise NotFound (admin-style lookup)."""
        user = self.find_by_id(db, user_id)
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def list_users(self, db: Session) -> list[User]:
        return db.query(User).order_by(User.id).all()

    def create(
        self,
        db: Session,
        *,
        username: str,
        email: str,
        first_name: str | None = None,
        last_name: str | None = None,
        avatar_url: str | None = None,
        role: str = "user",
    ) -> User:
        """
        Add and flush a new user. Raises Conflict when the username or email is
        taken, whether caught by the pre-check or by the unique constraints.
        """
        email = normalize_email(email)
        existing = (
            db.query(User)
            .filter((User.email == email) | (User.username == username))
            .first()
        )
        if existing is not None:
            field = "email" if existing.email == email else "username"
            raise Conflict(f"User with this {field} already exists")

        user = User(
            username=username,
            email=email,
            first_name=first_name,
            last_name=last_name,
            avatar_url=avatar_url,
            role=role,
        )
        db.add(user)
        try:
            db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent insert of the same username/email.
            raise Conflict("User with this email or username already exists") from e
        self.logger.info("User created", extra={"user_id": user.id, "username": user.username})
        return user
