# crm/deps.py
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlmodel import Session

from crm.db import get_session
from crm.models import User
from crm.security import parse_token

PERMISSIONS = {
    "view_all_leads": ("operator", "admin"),
    "assign_leads": ("operator", "admin"),
    "manage_automation": ("operator", "admin"),
    "view_payments": ("operator", "admin"),
    "create_deliveries": ("operator", "admin"),
    "view_own_prospects": ("agent", "admin"),
    "receive_leads": ("agent", "admin"),
}


def get_current_user(
    authorization: Optional[str] = Header(None),
    session: Session = Depends(get_session),
) -> User:
    """
    Reads Authorization: Bearer <token>, decodes the JWT and loads the user.
    """
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    token = authorization.split(" ", 1)[1].strip()
    payload = parse_token(token)  # raises 401 if invalid

    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user = session.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def has_permission(user: Optional[User], action: str) -> bool:
    if user is None:
        return False
    return user.role in PERMISSIONS.get(action, ())


def require_role(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return _guard


def require_permission(action: str):
    """Dependency guarding a route with one entry of PERMISSIONS."""
    def _guard(user: User = Depends(get_current_user)) -> User:
        if not has_permission(user, action):
            raise HTTPException(status_code=403, detail=f"Missing permission: {action}")
        return user

    return _guard


require_operator = require_role("operator", "admin")
