import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from jwt.exceptions import PyJWTError as JWTError

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 12  # one working day

logger = logging.getLogger(__name__)


def create_access_token(data: dict, secret: str, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    token = jwt.encode(to_encode, secret, algorithm=ALGORITHM)
    logger.debug(f"Access token created for {data.get('sub', '[no sub]')} expiring at {expire}")
    return token


def decode_token(token: str, secret: str) -> Optional[dict]:
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"Failed to decode JWT: {e}")
        return None
    if payload.get("type") != "access":
        logger.warning("Token is not an access token")
        return None
    return payload
