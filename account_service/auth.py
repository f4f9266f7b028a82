from typing import Optional

from fastapi import Header, HTTPException

from finance_common.security import InvalidToken, bearer_token, decode_token

from .config import INTERNAL_TOKEN


def get_user(auth: Optional[str] = Header(default=None, alias="Authorization")) -> str:
    token = bearer_token(auth)
    if not token:
        raise HTTPException(401, "Missing token")
    try:
        return decode_token(token)
    except InvalidToken:
        raise HTTPException(401, "Invalid token")


def require_internal(internal: Optional[str] = Header(default=None, alias="X-Internal-Token")) -> None:
    if internal != INTERNAL_TOKEN:
        raise HTTPException(401, "Unauthorized internal call")
