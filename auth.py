import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from jwt import PyJWTError
from passlib.context import CryptContext
from pymongo.database import Database

import config
from database import get_db
from helpers import is_valid_object_id, parse_object_id
from schemas import UserType

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return str(pwd_context.hash(password))


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return bool(pwd_context.verify(plain_password, hashed_password))
    except (ValueError, TypeError) as e:
        logger.error(f"Error verifying password: {str(e)}")
        return False


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(seconds=config.JWT_EXPIRE_AT))
    return jwt.encode({"sub": str(user_id), "exp": expire}, config.JWT_SECRET, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, config.JWT_SECRET, algorithms=[ALGORITHM])


def token_from_request(request: Request) -> Optional[str]:
    """Read the access token from the x-access-token header or a Bearer authorization."""
    token = request.headers.get(config.X_ACCESS_TOKEN)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def user_from_token(db: Database, token: Optional[str]) -> Optional[Dict[str, Any]]:
    if not token:
        return None
    try:
        payload = decode_access_token(token)
    except PyJWTError as e:
        logger.warning(f"Invalid access token: {e}")
        return None
    sub = payload.get("sub")
    if not is_valid_object_id(sub):
        return None
    user = db["user"].find_one({"_id": parse_object_id(sub)})
    if not user or user.get("blacklisted"):
        return None
    return user


def get_current_user(request: Request, db: Database = Depends(get_db)) -> Dict[str, Any]:
    token = token_from_request(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No token provided")
    user = user_from_token(db, token)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def is_admin(user: Optional[Dict[str, Any]]) -> bool:
    return bool(user) and user.get("type") == UserType.ADMIN.value


def is_supplier(user: Optional[Dict[str, Any]]) -> bool:
    return bool(user) and user.get("type") == UserType.SUPPLIER.value


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def require_backend_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not (is_admin(user) or is_supplier(user)):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Back-office access required")
    return user


def assert_can_manage_supplier(user: Dict[str, Any], supplier_id: Any) -> None:
    """Admins manage every supplier, a supplier only itself."""
    if is_admin(user):
        return
    if is_supplier(user) and str(user["_id"]) == str(supplier_id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")


def assert_self_or_admin(user: Dict[str, Any], user_id: Any) -> None:
    if is_admin(user) or str(user["_id"]) == str(user_id):
        return
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
