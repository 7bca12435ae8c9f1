from __future__ import annotations

from flask import g, request

from rebooked.extensions import db
from rebooked.models import User
from rebooked.utils.jwt_utils import decode_token, get_bearer_token


def current_user() -> User | None:
    """Resolve the bearer token on the current request to a profile row."""
    cached = getattr(g, "auth_user", None)
    if cached is not None:
        return cached
    token = get_bearer_token(request.headers.get("Authorization", ""))
    if not token:
        return None
    payload = decode_token(token)
    if not payload:
        return None
    sub = str(payload.get("sub") or "").strip()
    if not sub:
        return None
    user = db.session.get(User, sub)
    if user is not None:
        g.auth_user = user
        g.auth_user_id = user.id
        g.auth_role = (user.role or "user").strip().lower()
    return user
