from fastapi import APIRouter, Depends

from . import chats
from .auth import auth_required, get_store
from .models import User
from .schemas import ChatCreateIn, ChatRenameIn, MessageIn, RotateKeyIn, dump

router = APIRouter(prefix="/api", tags=["chats"])


@router.get("/chats")
def list_chats(me: User = Depends(auth_required), store=Depends(get_store)):
    out = []
    for chat, last in chats.list_chats_for(store, me.id):
        item = dump(chat)
        item["lastMessage"] = dump(last) if last else None
        out.append(item)
    return {"chats": out}


@router.post("/chats", status_code=201)
def create_chat(data: ChatCreateIn, me: User = Depends(auth_required), store=Depends(get_store)):
    chat = chats.create_chat(store, me.id, data.name, data.participant_ids, data.encryption_fingerprint)
    return {"chat": dump(chat)}


@router.get("/chats/{chat_id}")
def get_chat(chat_id: str, me: User = Depends(auth_required), store=Depends(get_store)):
    return {"chat": dump(chats.get_chat(store, chat_id, me.id))}


@router.patch("/chats/{chat_id}")
def rename_chat(chat_id: str, data: ChatRenameIn, me: User = Depends(auth_required),
                store=Depends(get_store)):
    return {"chat": dump(chats.rename_chat(store, chat_id, me.id, data.name))}


@router.delete("/chats/{chat_id}")
def delete_chat(chat_id: str, me: User = Depends(auth_required), store=Depends(get_store)):
    chats.delete_chat(store, chat_id, me.id)
    return {"ok": True}


@router.post("/chats/{chat_id}/clear")
def clear_chat(chat_id: str, me: User = Depends(auth_required), store=Depends(get_store)):
    removed = chats.clear_chat_messages(store, chat_id, me.id)
    return {"ok": True, "removed": removed}


@router.post("/chats/{chat_id}/rotate")
def rotate_chat(chat_id: str, data: RotateKeyIn, me: User = Depends(auth_required),
                store=Depends(get_store)):
    chat = chats.rotate_chat_key(store, chat_id, me.id, data.encryption_fingerprint)
    return {"chat": dump(chat), "replaces": chat_id}


@router.get("/chats/{chat_id}/messages")
def list_messages(chat_id: str, me: User = Depends(auth_required), store=Depends(get_store)):
    return {"messages": [dump(m) for m in chats.list_messages(store, chat_id, me.id)]}


@router.post("/messages", status_code=201)
def send_message(data: MessageIn, me: User = Depends(auth_required), store=Depends(get_store)):
    msg = chats.append_message(store, data.chat_id, me.id, data.payload, data.mentions)
    return {"message": dump(msg)}
