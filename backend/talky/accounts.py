import hmac
import logging
from typing import List, Optional

from . import config, ops
from .auth import make_hash, verify_hash
from .errors import Forbidden, InvalidRequest, Unauthorized
from .models import Document, GlobalFlags, User

logger = logging.getLogger("talky.accounts")

MIN_PASSWORD = 8


def _check_password(password: str) -> None:
    if not password or len(password) < MIN_PASSWORD:
        raise InvalidRequest(f"password must be at least {MIN_PASSWORD} characters")


def get_document(store) -> Document:
    return store.load()


def create_user(store, username: str, password_hash: str) -> User:
    user = store.apply(ops.add_user, username, password_hash, label=f"Add user {username.strip()}")
    logger.info("user %s created (admin=%s)", user.id, user.is_admin)
    return user


def signup(store, username: str, password: str) -> User:
    _check_password(password)
    return create_user(store, username, make_hash(password))


def login(store, username: str, password: str) -> User:
    user = store.load().user_by_name(username or "")
    if user is None or not verify_hash(password or "", user.password_hash):
        raise Unauthorized("invalid credentials")
    return user


def get_user(store, user_id: str) -> User:
    return ops.require_user(store.load(), user_id)


def list_users(store, exclude_id: Optional[str] = None) -> List[User]:
    users = [u for u in store.load().users if u.id != exclude_id]
    return sorted(users, key=lambda u: u.username.lower())


def rename_user(store, user_id: str, username: str) -> User:
    return update_user(store, user_id, username=username)


def change_password(store, user_id: str, password: str) -> User:
    return update_user(store, user_id, password=password)


def set_admin(store, user_id: str, is_admin: bool) -> User:
    return store.apply(ops.set_admin, user_id, is_admin, label=f"Set admin of {user_id}")


def update_user(store, user_id: str, username: Optional[str] = None, password: Optional[str] = None,
                is_admin: Optional[bool] = None) -> User:
    """Apply a profile edit as one mutation; nothing is queued if any field is rejected."""
    password_hash = None
    if password is not None:
        _check_password(password)
        password_hash = make_hash(password)
    if username is None and password_hash is None and is_admin is None:
        return get_user(store, user_id)

    def fn(doc: Document) -> Document:
        if username is not None:
            ops.rename_user(doc, user_id, username)
        if password_hash is not None:
            ops.set_password_hash(doc, user_id, password_hash)
        if is_admin is not None:
            ops.set_admin(doc, user_id, is_admin)
        return doc

    return store.mutate(fn, label=f"Update user {user_id}").user(user_id)


def grant_admin_by_password(store, user_id: str, password: str) -> User:
    if not config.ADMIN_PASSWORD or not hmac.compare_digest(
            (password or "").encode(), config.ADMIN_PASSWORD.encode()):
        raise Forbidden("wrong admin password")
    return set_admin(store, user_id, True)


def remove_user(store, user_id: str) -> User:
    user = store.apply(ops.remove_user, user_id, label=f"Delete user {user_id}")
    logger.info("user %s deleted", user_id)
    return user


def set_flags(store, **flags) -> GlobalFlags:
    if all(value is None for value in flags.values()):
        return store.load().global_flags

    def fn(doc: Document) -> Document:
        for name, value in flags.items():
            if value is not None:
                ops.set_flag(doc, name, value)
        return doc

    return store.mutate(fn, label="Update global flags").global_flags


def global_logout(store) -> GlobalFlags:
    return store.apply(ops.global_logout, label="Log out every session")
