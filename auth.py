"""
Session tokens and route access policies.

A session is a signed JWT kept in an HTTP-only cookie; nothing is stored
server side. Which routes need a session, an admin user or a matching email
is declared once in ROUTE_POLICIES and enforced through ``enforce(route)``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

import jwt
from fastapi import Depends, Request, Response
from pymongo.collection import Collection
from pymongo.database import Database

import config
from database import USERS, get_db
from errors import ForbiddenError, InternalError, InvalidTokenError, UnauthenticatedError

logger = logging.getLogger("hostel.auth")


@dataclass(frozen=True)
class Identity:
    """The verified token owner."""

    email: Optional[str]
    claims: dict = field(default_factory=dict)


# ===================== Tokens & cookies =====================

def issue_token(payload: dict) -> str:
    if not config.JWT_TOKEN_SECRET_KEY:
        raise InternalError("Token signing secret is not configured")
    claims = dict(payload)
    claims["exp"] = datetime.now(timezone.utc) + timedelta(hours=config.JWT_EXPIRES_HOURS)
    return jwt.encode(claims, config.JWT_TOKEN_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def verify_token(request: Request) -> Identity:
    token = request.cookies.get(config.COOKIE_NAME)
    if not token:
        raise UnauthenticatedError()
    if not config.JWT_TOKEN_SECRET_KEY:
        raise InternalError("Token signing secret is not configured")
    try:
        claims = jwt.decode(token, config.JWT_TOKEN_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
    except jwt.InvalidTokenError as exc:
        logger.warning("Rejected session token on %s: %s", request.url.path, exc)
        raise InvalidTokenError() from exc
    return Identity(email=claims.get("email"), claims=claims)


def cookie_options() -> dict:
    """Cross-site cookies in production, strict same-site everywhere else."""
    production = config.is_production()
    return {
        "httponly": True,
        "secure": production,
        "samesite": "none" if production else "strict",
    }


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(config.COOKIE_NAME, token, max_age=config.COOKIE_MAX_AGE, **cookie_options())


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(config.COOKIE_NAME, **cookie_options())


# ===================== Authorization =====================

class AuthService:
    """Role checks against the stored user documents."""

    def __init__(self, users: Collection):
        self._users = users

    def is_admin(self, email: Optional[str]) -> bool:
        if not email:
            return False
        user = self._users.find_one({"email": email}, {"role": 1})
        return bool(user) and user.get("role") == "admin"

    def require_admin(self, identity: Identity) -> None:
        if not self.is_admin(identity.email):
            logger.warning("Admin access denied for %s", identity.email)
            raise ForbiddenError("forbidden access: You are not admin")


def get_auth_service(db: Database = Depends(get_db)) -> AuthService:
    return AuthService(db[USERS])


@dataclass(frozen=True)
class Policy:
    authenticated: bool = False
    admin: bool = False
    # path or query parameter that must equal the token owner's email
    self_param: Optional[str] = None


PUBLIC = Policy()
USER = Policy(authenticated=True)
ADMIN = Policy(authenticated=True, admin=True)


def owner(param: str, admin: bool = False) -> Policy:
    return Policy(authenticated=True, admin=admin, self_param=param)


ROUTE_POLICIES: Dict[str, Policy] = {
    # service
    "root": PUBLIC,
    "health": PUBLIC,
    # session
    "issue_jwt": PUBLIC,
    "logout": PUBLIC,
    # payments
    "create_payment_intent": PUBLIC,
    "save_package_payment": USER,
    "list_payments": owner("email"),
    # meal queries
    "list_meals": PUBLIC,
    "search_meals_text": PUBLIC,
    "list_hostel_meals": PUBLIC,
    "list_sorted_meals": PUBLIC,
    "get_meal": PUBLIC,
    "meals_count": PUBLIC,
    "served_meals_count": PUBLIC,
    "upcoming_meals_count": USER,
    "overview_stats": PUBLIC,
    "admin_data": owner("adminEmail", admin=True),
    # meal management
    "create_meal": ADMIN,
    "update_meal": ADMIN,
    "delete_meal": ADMIN,
    # reactions, reviews and ratings
    "like_meal": PUBLIC,
    "add_review": PUBLIC,
    "delete_review": PUBLIC,
    "reset_reviews": ADMIN,
    "update_rating": PUBLIC,
    "list_reviews_page": ADMIN,
    "list_all_reviews": USER,
    "list_user_reviews": owner("email"),
    # upcoming meals
    "create_upcoming_meal": ADMIN,
    "list_upcoming_meals": USER,
    "list_all_upcoming_meals": USER,
    "like_upcoming_meal": USER,
    "publish_meal": ADMIN,
    # requested and served meals
    "create_requested_meal": USER,
    "list_requested_meals": PUBLIC,
    "list_user_requested_meals": owner("email"),
    "delete_requested_meal": USER,
    "replace_requested_meal_snapshots": USER,
    "update_request_status": ADMIN,
    "list_served_meals": ADMIN,
    "insert_served_meals": ADMIN,
    # users
    "register_user": PUBLIC,
    "list_users": ADMIN,
    "get_user_by_email": owner("email"),
    "delete_user": ADMIN,
    "make_admin": ADMIN,
    "check_admin": PUBLIC,
    "check_premium": PUBLIC,
    "update_badge": USER,
}


def require_same_email(identity: Identity, email: Optional[str]) -> None:
    if not identity.email or identity.email != email:
        logger.warning("Email mismatch: token owner %s, requested %s", identity.email, email)
        raise ForbiddenError("Forbidden Access: Email not matched")


def _check_owner(policy: Policy, request: Request, identity: Identity) -> Identity:
    if policy.self_param is None:
        return identity
    expected = request.path_params.get(policy.self_param) or request.query_params.get(policy.self_param)
    require_same_email(identity, expected)
    return identity


def enforce(route: str) -> Callable[..., Optional[Identity]]:
    """Build the dependency enforcing the policy registered for ``route``.

    The dependency resolves to the verified Identity, or None on public routes.
    An unknown route name fails at import time.
    """
    policy = ROUTE_POLICIES[route]

    if not policy.authenticated:
        def public() -> None:
            return None
        return public

    if not policy.admin:
        def authenticated(request: Request) -> Identity:
            return _check_owner(policy, request, verify_token(request))
        return authenticated

    def admin_only(request: Request, auth: AuthService = Depends(get_auth_service)) -> Identity:
        identity = verify_token(request)
        auth.require_admin(identity)
        return _check_owner(policy, request, identity)
    return admin_only
