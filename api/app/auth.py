from typing import Optional
from fastapi import Depends, Header, HTTPException, Query, status
from itsdangerous import BadData
from pydantic import BaseModel

from .config import ADMIN_ACCESS_TOKEN
from .utils import read_token


class AccessContext(BaseModel):
    role: str
    user_id: Optional[str] = None


def resolve_access_context(
    x_access_token: Optional[str] = Header(default=None, alias="X-Access-Token"),
    token: Optional[str] = Query(default=None),
) -> AccessContext:
    candidate = x_access_token or token
    if not candidate:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    if ADMIN_ACCESS_TOKEN and candidate == ADMIN_ACCESS_TOKEN:
        return AccessContext(role="admin")
    try:
        data = read_token(candidate)
    except BadData:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    user_id = data.get("user_id") if isinstance(data, dict) else None
    if not user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid access token")
    return AccessContext(role="user", user_id=str(user_id))


def require_owner_or_admin(owner_id: Optional[str], context: AccessContext) -> None:
    if context.role == "admin":
        return
    if context.user_id and owner_id == context.user_id:
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied for this signing request")
