from typing import Optional
from fastapi import Depends, Header, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from app.core.config import settings

security = HTTPBearer(auto_error=False)

def _decode_access(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid access token")
    return payload

def get_optional_identity(creds: HTTPAuthorizationCredentials | None = Depends(security)) -> dict | None:
    # Guest checkout: no credentials means no owning user, a bad token is still rejected
    if not creds:
        return None
    return _decode_access(creds.credentials)

def admin_or_internal(
    x_internal_key: Optional[str] = Header(default=None, alias="X-Internal-Key"),
    creds: HTTPAuthorizationCredentials | None = Depends(security),
):
    # 1) allow trusted internal calls (payment gateway, schedulers)
    if x_internal_key and x_internal_key == (settings.SVC_INTERNAL_KEY or ""):
        return True

    # 2) otherwise require admin JWT
    if not creds:
        raise HTTPException(status_code=401, detail="Unauthorized")
    payload = _decode_access(creds.credentials)
    if payload.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Admin required")
    return True
