import uuid
from typing import Optional

from sqlalchemy.orm import sessionmaker

from models import User
from auth.token import decode_token


def get_current_user(token: str, session_factory: sessionmaker, secret: str) -> Optional[User]:
    payload = decode_token(token, secret)
    if not payload:
        return None
    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        return None
    with session_factory() as db:
        return db.get(User, user_id)


def current_user_from_request(req, session_factory: sessionmaker, secret: str) -> Optional[User]:
    auth = req.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return get_current_user(auth[7:], session_factory, secret)
