from fastapi import APIRouter, Depends

from . import accounts
from .auth import admin_required, auth_required, get_store
from .errors import InvalidRequest
from .models import User
from .schemas import AdminLoginIn, AdminUserUpdateIn, FlagsIn, dump, public_user

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/login")
def admin_login(data: AdminLoginIn, me: User = Depends(auth_required), store=Depends(get_store)):
    user = accounts.grant_admin_by_password(store, me.id, data.password)
    return {"ok": True, "user": public_user(user)}


@router.get("/users")
def list_users(me: User = Depends(admin_required), store=Depends(get_store)):
    return {"users": [public_user(u) for u in accounts.list_users(store)]}


@router.patch("/users/{user_id}")
def update_user(user_id: str, data: AdminUserUpdateIn, me: User = Depends(admin_required),
                store=Depends(get_store)):
    user = accounts.update_user(store, user_id, username=data.username, password=data.password,
                                is_admin=data.is_admin)
    return {"user": public_user(user)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, me: User = Depends(admin_required), store=Depends(get_store)):
    if user_id == me.id:
        raise InvalidRequest("admins cannot delete themselves")
    accounts.remove_user(store, user_id)
    return {"ok": True}


@router.get("/flags")
def get_flags(me: User = Depends(admin_required), store=Depends(get_store)):
    return {"flags": dump(accounts.get_document(store).global_flags)}


@router.put("/flags")
def set_flags(data: FlagsIn, me: User = Depends(admin_required), store=Depends(get_store)):
    flags = accounts.set_flags(store, messages_paused=data.messages_paused,
                               calls_paused=data.calls_paused)
    return {"flags": dump(flags)}


@router.post("/logout-all")
def logout_all(me: User = Depends(admin_required), store=Depends(get_store)):
    return {"flags": dump(accounts.global_logout(store))}


@router.get("/document")
def get_document(me: User = Depends(admin_required), store=Depends(get_store)):
    doc = accounts.get_document(store)
    return doc.model_dump(by_alias=True, mode="json",
                          exclude={"users": {"__all__": {"password_hash"}}})
