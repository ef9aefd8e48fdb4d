"""
Request guards as an ordered chain of plain functions.

Each guard inspects a GuardContext and returns a GuardDecision; the chain
stops at the first denial. Guards know nothing about the web framework; the
FastAPI dependencies in api/v1/auth.py build the context and translate a
denial into an HTTP error.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from signwise.core.security import ACCESS_TOKEN, TokenClaims, TokenIssuer
from signwise.services.errors import AuthError


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    reason: str | None = None
    status_code: int = 200

    @classmethod
    def allow(cls) -> "GuardDecision":
        return cls(True)

    @classmethod
    def deny(cls, reason: str, status_code: int = 401) -> "GuardDecision":
        return cls(False, reason, status_code)


@dataclass
class GuardContext:
    """Request-scoped state shared along the chain; guards may fill in claims."""

    authorization: str | None
    claims: TokenClaims | None = None

    @property
    def bearer_token(self) -> str | None:
        if not self.authorization:
            return None
        scheme, _, credentials = self.authorization.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            return None
        return credentials.strip()


Guard = Callable[[GuardContext], GuardDecision]


def bearer_token_present(ctx: GuardContext) -> GuardDecision:
    if ctx.bearer_token is None:
        return GuardDecision.deny("Not authenticated")
    return GuardDecision.allow()


def access_token_valid(issuer: TokenIssuer) -> Guard:
    """Verify the bearer access token and attach its claims. No storage lookup."""

    def guard(ctx: GuardContext) -> GuardDecision:
        token = ctx.bearer_token
        if token is None:
            return GuardDecision.deny("Not authenticated")
        try:
            ctx.claims = issuer.verify(token, expected_use=ACCESS_TOKEN)
        except AuthError:
            return GuardDecision.deny("Invalid or expired token")
        return GuardDecision.allow()

    return guard


def role_required(*roles: str) -> Guard:
    allowed = frozenset(roles)

    def guard(ctx: GuardContext) -> GuardDecision:
        if ctx.claims is None:
            return GuardDecision.deny("Not authenticated")
        if ctx.claims.role not in allowed:
            return GuardDecision.deny(
                f"{' or '.join(sorted(allowed)).capitalize()} access required", status_code=403
            )
        return GuardDecision.allow()

    return guard


class GuardChain:
    """Evaluates guards in order; the first denial wins."""

    def __init__(self, guards: Iterable[Guard]) -> None:
        self.guards = list(guards)

    def then(self, *guards: Guard) -> "GuardChain":
        return GuardChain([*self.guards, *guards])

    def evaluate(self, ctx: GuardContext) -> GuardDecision:
        for guard in self.guards:
            decision = guard(ctx)
            if not decision.allowed:
                return decision
        return GuardDecision.allow()
