# auth.py
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
import os
import logging

from .errors import Unauthenticated
from .models import CallerRole
from .permissions import Caller

# Get JWT secret key from environment variable
SECRET_KEY = os.getenv("JWT_SECRET_KEY")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 30))

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(caller_id: str, role: str, expires_delta: Optional[timedelta] = None):
    """Sign a token the way the identity provider does; used by tests and local tooling."""
    if not SECRET_KEY:
        raise RuntimeError("JWT_SECRET_KEY is not set")
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": caller_id, "role": CallerRole(role).value, "exp": expire}
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_caller(token: str) -> Caller:
    if not SECRET_KEY:
        logging.error("JWT_SECRET_KEY is not set; rejecting all tokens")
        raise Unauthenticated("Could not validate credentials")
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logging.error(f"JWTError: {str(e)}")
        raise Unauthenticated("Could not validate credentials")
    caller_id = payload.get("sub")
    role = payload.get("role")
    if not caller_id or role is None:
        raise Unauthenticated("Could not validate credentials")
    try:
        return Caller(id=caller_id, role=role)
    except ValueError:
        logging.error(f"Token for {caller_id} carries unknown role {role}")
        raise Unauthenticated("Could not validate credentials")


async def get_current_caller(
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Caller:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthenticated("Not authenticated")
    return decode_caller(credentials.credentials)
