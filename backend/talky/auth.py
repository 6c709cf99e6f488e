from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from . import config
from .errors import Forbidden, Unauthorized
from .models import User, now_ms

JWT_ALG = "HS256"
security = HTTPBearer(auto_error=False)


def make_hash(pw: str) -> str:
    return bcrypt.hashpw(pw.encode(), bcrypt.gensalt()).decode()


def verify_hash(pw: str, ph: str) -> bool:
    try:
        return bcrypt.checkpw(pw.encode(), ph.encode())
    except ValueError:
        return False


def create_token(user_id: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "iat_ms": now_ms(),
        "exp": now + timedelta(hours=config.TOKEN_TTL_HOURS),
    }
    return jwt.encode(payload, config.JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, config.JWT_SECRET, algorithms=[JWT_ALG])
    except jwt.PyJWTError:
        raise Unauthorized("invalid token")


def auth_required(request: Request,
                  creds: HTTPAuthorizationCredentials = Depends(security)) -> User:
    if creds is None:
        raise Unauthorized("not authenticated")
    data = decode_token(creds.credentials)
    doc = request.app.state.store.load()
    user = doc.user(data.get("sub", ""))
    if user is None:
        raise Unauthorized("invalid token")
    if data.get("iat_ms", 0) < doc.global_flags.global_logout_at:
        raise Unauthorized("session expired, please log in again")
    return user


def admin_required(me: User = Depends(auth_required)) -> User:
    if not me.is_admin:
        raise Forbidden("admin only")
    return me


def get_store(request: Request):
    return request.app.state.store
