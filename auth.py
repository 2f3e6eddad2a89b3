import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
from errors import Forbidden, InvalidToken, Unauthorized

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=10)

ADMIN_ROLE = "admin"
CUSTOMER_ROLE = "customer"


# Utilities

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        # stored value is not a recognizable hash
        return False


def token_claims(user: Dict[str, Any]) -> Dict[str, Any]:
    first, last = user.get("firstName", ""), user.get("lastName", "")
    return {
        "id": str(user["_id"]) if user.get("_id") is not None else None,
        "email": user["email"],
        "firstName": first,
        "lastName": last,
        "role": user.get("role", CUSTOMER_ROLE),
        "name": f"{first} {last}",
    }


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=config.ACCESS_TOKEN_EXPIRE_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise InvalidToken()


# Middleware: runs on every request

async def identity_middleware(request: Request, call_next):
    """Attach the decoded token claims to ``request.state.user``.

    A request without an Authorization header continues anonymously; a header
    carrying a bad or expired token is rejected here, before any route runs.
    """
    request.state.user = None
    authorization = request.headers.get("authorization")
    if authorization:
        token = authorization.replace("Bearer ", "", 1).strip()
        try:
            request.state.user = decode_token(token)
        except InvalidToken as exc:
            logger.info("Rejected invalid token on %s %s", request.method, request.url.path)
            return JSONResponse(status_code=exc.status_code, content=exc.body())
    return await call_next(request)


# Dependencies

def get_identity(request: Request) -> Optional[dict]:
    return getattr(request.state, "user", None)


def require_user(identity: Optional[dict] = Depends(get_identity)) -> dict:
    if not identity:
        raise Unauthorized()
    return identity


def require_role(role: str):
    """Dependency factory: 401 without an identity, 403 with the wrong role."""

    def guard(identity: Optional[dict] = Depends(get_identity)) -> dict:
        if not identity:
            raise Unauthorized("Unauthorized - Login required")
        if identity.get("role") != role:
            raise Forbidden(f"Forbidden - {role.capitalize()} access only")
        return identity

    return guard


require_admin = require_role(ADMIN_ROLE)


def is_admin(identity: Optional[dict]) -> bool:
    return bool(identity) and identity.get("role") == ADMIN_ROLE
