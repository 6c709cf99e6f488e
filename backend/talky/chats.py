from typing import Iterable, List, Optional, Tuple

from . import ops
from .models import Chat, EncryptedPayload, Message


def create_chat(store, creator_id: str, name: Optional[str], participant_ids: Iterable[str],
                fingerprint: str = "") -> Chat:
    return store.apply(ops.add_chat, creator_id, name, list(participant_ids), fingerprint,
                       label=f"Create chat {name or ''}".strip())


def get_chat(store, chat_id: str, user_id: Optional[str] = None) -> Chat:
    return ops.require_chat(store.load(), chat_id, user_id)


def list_chats_for(store, user_id: str) -> List[Tuple[Chat, Optional[Message]]]:
    """Chats the user takes part in, each with its latest message."""
    doc = store.load()
    out = []
    for chat in ops.chats_for(doc, user_id):
        msgs = ops.messages_in(doc, chat.id)
        out.append((chat, msgs[-1] if msgs else None))
    return out


def rename_chat(store, chat_id: str, user_id: str, name: str) -> Chat:
    return store.apply(ops.rename_chat, chat_id, user_id, name, label=f"Rename chat {chat_id}")


def clear_chat_messages(store, chat_id: str, user_id: str) -> int:
    return store.apply(ops.clear_chat, chat_id, user_id, label=f"Clear chat {chat_id}")


def delete_chat(store, chat_id: str, user_id: str) -> Chat:
    return store.apply(ops.delete_chat, chat_id, user_id, label=f"Delete chat {chat_id}")


def rotate_chat_key(store, chat_id: str, user_id: str, fingerprint: str) -> Chat:
    return store.apply(ops.rotate_chat_key, chat_id, user_id, fingerprint,
                       label=f"Rotate key of chat {chat_id}")


def append_message(store, chat_id: str, from_user_id: str, payload: EncryptedPayload,
                   mentions: Iterable[str] = ()) -> Message:
    return store.apply(ops.append_message, chat_id, from_user_id, payload, list(mentions),
                       label=f"Add message in chat {chat_id}")


def list_messages(store, chat_id: str, user_id: Optional[str] = None) -> List[Message]:
    doc = store.load()
    ops.require_chat(doc, chat_id, user_id)
    return ops.messages_in(doc, chat_id)
