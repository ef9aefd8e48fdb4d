"""
Create a user with a local password (e.g. the first admin). Run from project root:
  python -m signwise.scripts.create_user USERNAME EMAIL PASSWORD [role]
Example:
  python -m signwise.scripts.create_user admin admin@example.com your-secure-password admin
"""
import argparse
import sys

from signwise.core.config import get_settings
from signwise.core.database import SessionLocal
from signwise.core.security import (
    PASSWORD_MAX_LEN,
    PASSWORD_MIN_LEN,
    USERNAME_MAX_LEN,
    USERNAME_MIN_LEN,
    CredentialHasher,
)
from signwise.models import AuthMethod, AuthMethodType
from signwise.services.errors import Conflict
from signwise.services.users import UserStore, normalize_email


def main() -> int:
    parser = argparse.ArgumentParser(description="Create a Signwise user with a LOCAL credential.")
    parser.add_argument("username", help=f"Username ({USERNAME_MIN_LEN}-{USERNAME_MAX_LEN} chars)")
    parser.add_argument("email", help="Email address used to log in")
    parser.add_argument("password", help=f"Password ({PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} chars)")
    parser.add_argument("role", nargs="?", default="user", choices=["user", "admin"])
    args = parser.parse_args()

    username = args.username.strip()
    email = normalize_email(args.email)
    if not USERNAME_MIN_LEN <= len(username) <= USERNAME_MAX_LEN:
        print("Invalid username length.", file=sys.stderr)
        return 1
    if "@" not in email:
        print("Invalid email address.", file=sys.stderr)
        return 1
    if not PASSWORD_MIN_LEN <= len(args.password) <= PASSWORD_MAX_LEN:
        print(f"Password must be {PASSWORD_MIN_LEN}-{PASSWORD_MAX_LEN} characters.", file=sys.stderr)
        return 1

    hasher = CredentialHasher(get_settings().BCRYPT_ROUNDS)
    db = SessionLocal()
    try:
        try:
            user = UserStore().create(db, username=username, email=email, role=args.role)
        except Conflict as e:
            db.rollback()
            print(e.message, file=sys.stderr)
            return 1
        db.add(
            AuthMethod(
                user_id=user.id,
                type=AuthMethodType.LOCAL.value,
                identifier=email,
                credential=hasher.hash(args.password),
                is_verified=True,
                failed_attempts=0,
            )
        )
        db.commit()
        print(f"Created user '{username}' <{email}> with role '{args.role}'.")
        return 0
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
