import os
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
ALGO = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_MIN = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))


class InvalidToken(Exception):
    pass


def create_token(sub: str, minutes: int = ACCESS_MIN) -> str:
    exp = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode({"sub": sub, "exp": exp}, JWT_SECRET, algorithm=ALGO)


def decode_token(token: str) -> str:
    """Return the subject of a signed token, raising InvalidToken otherwise."""
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[ALGO])
    except JWTError as e:
        raise InvalidToken(str(e)) from e
    sub = payload.get("sub")
    if not sub:
        raise InvalidToken("token has no subject")
    return sub


def bearer_token(header: str | None) -> str | None:
    if not header or not header.lower().startswith("bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None
