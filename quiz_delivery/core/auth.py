from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import List, Optional
import jwt
import logging
from datetime import datetime, timedelta, timezone
from quiz_delivery.core.config import settings
from quiz_delivery.core.errors import Unauthorized

logger = logging.getLogger(__name__)

class TokenData(BaseModel):
    sub: str
    roles: List[str] = []

bearer = HTTPBearer(auto_error=False)

def create_token(user_id: str, roles: List[str], ttl_minutes: Optional[int] = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = ttl_minutes if ttl_minutes is not None else settings.ACCESS_TOKEN_EXPIRE_MINUTES
    payload = {"sub": user_id, "roles": roles, "iat": int(now.timestamp()), "exp": int((now + timedelta(minutes=ttl)).timestamp())}
    return jwt.encode(payload, settings.SECRET_KEY.get_secret_value(), algorithm=settings.ALGORITHM)

def decode_token(token: str) -> Optional[TokenData]:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY.get_secret_value(), algorithms=[settings.ALGORITHM])
    except jwt.PyJWTError as e:
        logger.debug("Rejected bearer token: %s", e)
        return None
    sub = payload.get("sub")
    if not sub:
        return None
    return TokenData(sub=sub, roles=payload.get("roles", []))

def get_optional_user(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> Optional[TokenData]:
    """Identity for the request, or None when no valid bearer token was sent."""
    if creds is None:
        return None
    return decode_token(creds.credentials)

def get_current_user(user: Optional[TokenData] = Depends(get_optional_user)) -> TokenData:
    if user is None:
        raise Unauthorized()
    return user
