"""Shared builders for tests: in-memory SQLite store and fast-hashing services."""

from datetime import timedelta

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from signwise.core.security import CredentialHasher, TokenIssuer
from signwise.models import AuthMethod, AuthMethodType, Base, User
from signwise.services.auth import AuthOrchestrator
from signwise.services.lockout import AccountLockPolicy
from signwise.services.oauth import OAuthIdentityLinker
from signwise.services.token_ledger import TokenLedger
from signwise.services.users import UserStore

TEST_SECRET = "test-signing-secret-0123456789-abcdef"
# Minimum bcrypt cost keeps the suite fast; production uses BCRYPT_ROUNDS.
TEST_BCRYPT_ROUNDS = 4


def make_session_factory() -> sessionmaker:
    """Fresh in-memory database with all tables; one shared connection across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


def make_issuer(**kwargs: object) -> TokenIssuer:
    return TokenIssuer(TEST_SECRET, **kwargs)


def make_auth_service(
    issuer: TokenIssuer | None = None,
    max_failed_attempts: int = 5,
    lockout_duration: timedelta = timedelta(minutes=15),
) -> AuthOrchestrator:
    issuer = issuer or make_issuer()
    users = UserStore()
    ledger = TokenLedger(issuer)
    return AuthOrchestrator(
        users=users,
        hasher=CredentialHasher(rounds=TEST_BCRYPT_ROUNDS),
        issuer=issuer,
        lock_policy=AccountLockPolicy(max_failed_attempts, lockout_duration),
        ledger=ledger,
        linker=OAuthIdentityLinker(users, ledger),
    )


def add_user_with_local_method(
    db: Session,
    username: str = "alice",
    email: str = "alice@x.com",
    credential: str | None = None,
    role: str = "user",
) -> tuple[User, AuthMethod]:
    """Insert a user and its LOCAL auth method directly and commit."""
    user = User(username=username, email=email, role=role)
    db.add(user)
    db.flush()
    method = AuthMethod(
        user_id=user.id,
        type=AuthMethodType.LOCAL.value,
        identifier=email,
        credential=credential,
        is_verified=True,
        failed_attempts=0,
    )
    db.add(method)
    db.commit()
    return user, method
