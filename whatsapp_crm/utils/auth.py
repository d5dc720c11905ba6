from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from bson import ObjectId
from pydantic import BaseModel
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette import status

from whatsapp_crm.config import settings
from whatsapp_crm.utils.helpers import to_object_id


# Token data model
class TokenData(BaseModel):
    user_id: Optional[str] = None
    # Parsed once here; every tenant-scoped query filters on this ObjectId
    company_id: Optional[ObjectId] = None

    model_config = {"arbitrary_types_allowed": True}


security = HTTPBearer()


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    """Issue a token. Login lives in the identity service; this is used by tooling and tests."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_access_token(token: str) -> TokenData:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    user_id = payload.get("sub")
    company_id = payload.get("company_id")
    company_oid = to_object_id(company_id) if company_id is not None else None
    if user_id is None or company_oid is None:
        raise _credentials_exception()
    return TokenData(user_id=str(user_id), company_id=company_oid)


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> TokenData:
    return decode_access_token(credentials.credentials)
