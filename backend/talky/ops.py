"""
In-place helpers over a Document copy, meant to run inside Store.mutate().

None of them touch the cache or the write queue. Each raises a TalkyError
before changing anything when the operation is not allowed, so a rejected
mutation never queues a write.
"""
from typing import Iterable, List, Optional, Union

from .errors import Disabled, InvalidRequest, NotFound
from .models import Chat, Document, EncryptedPayload, GlobalFlags, Message, User, new_id, now_ms

USERNAME_MAX = 32
CHAT_NAME_MAX = 80
FLAG_NAMES = ("messages_paused", "calls_paused")


def _now(now: Optional[int]) -> int:
    return now if now is not None else now_ms()


def _clean_username(username: str) -> str:
    name = (username or "").strip()
    if not name:
        raise InvalidRequest("username is required")
    if len(name) > USERNAME_MAX:
        raise InvalidRequest(f"username must be at most {USERNAME_MAX} characters")
    return name


def chat_kind(participant_ids: List[str]) -> str:
    return "direct" if len(participant_ids) == 2 else "group"


# users

def require_user(doc: Document, user_id: str) -> User:
    user = doc.user(user_id)
    if user is None:
        raise NotFound("user not found")
    return user


def add_user(doc: Document, username: str, password_hash: str, now: Optional[int] = None) -> User:
    name = _clean_username(username)
    if doc.user_by_name(name) is not None:
        raise InvalidRequest("username already taken")
    user = User(
        id=new_id(),
        username=name,
        password_hash=password_hash,
        is_admin=not doc.users,
        created_at=_now(now),
    )
    doc.users.append(user)
    return user


def rename_user(doc: Document, user_id: str, username: str) -> User:
    user = require_user(doc, user_id)
    name = _clean_username(username)
    other = doc.user_by_name(name)
    if other is not None and other.id != user_id:
        raise InvalidRequest("username already taken")
    user.username = name
    return user


def set_password_hash(doc: Document, user_id: str, password_hash: str) -> User:
    user = require_user(doc, user_id)
    user.password_hash = password_hash
    return user


def set_admin(doc: Document, user_id: str, is_admin: bool) -> User:
    user = require_user(doc, user_id)
    user.is_admin = is_admin
    return user


def remove_user(doc: Document, user_id: str) -> User:
    """Delete a user and everything that only made sense with them.

    Their calls (and signaling), the messages they wrote, and chats left with
    fewer than two participants go too. Surviving chats recompute their kind.
    """
    user = require_user(doc, user_id)
    doc.users = [u for u in doc.users if u.id != user_id]

    dead_chats = set()
    for chat in doc.chats:
        if user_id not in chat.participant_ids:
            continue
        chat.participant_ids = [p for p in chat.participant_ids if p != user_id]
        if len(chat.participant_ids) < 2:
            dead_chats.add(chat.id)
        else:
            chat.kind = chat_kind(chat.participant_ids)
    doc.chats = [c for c in doc.chats if c.id not in dead_chats]
    doc.messages = [m for m in doc.messages
                    if m.chat_id not in dead_chats and m.from_user_id != user_id]

    dead_calls = {c.id for c in doc.calls if c.involves(user_id)}
    doc.calls = [c for c in doc.calls if c.id not in dead_calls]
    doc.signaling_events = [e for e in doc.signaling_events if e.call_id not in dead_calls]
    return user


# chats

def require_chat(doc: Document, chat_id: str, user_id: Optional[str] = None) -> Chat:
    """The chat, if it exists and `user_id` (when given) takes part in it."""
    chat = doc.chat(chat_id)
    if chat is None or (user_id is not None and user_id not in chat.participant_ids):
        raise NotFound("chat not found")
    return chat


def _clean_chat_name(doc: Document, name: Optional[str], participant_ids: List[str]) -> str:
    name = (name or "").strip()
    if not name:
        others = [doc.user(p) for p in participant_ids[1:]]
        name = ", ".join(u.username for u in others if u is not None) or "Chat"
    return name[:CHAT_NAME_MAX]


def add_chat(doc: Document, creator_id: str, name: Optional[str], participant_ids: Iterable[str],
             fingerprint: str = "", now: Optional[int] = None) -> Chat:
    require_user(doc, creator_id)
    ids = [creator_id]
    for pid in participant_ids:
        if pid in ids:
            continue
        require_user(doc, pid)
        ids.append(pid)
    chat = Chat(
        id=new_id(),
        name=_clean_chat_name(doc, name, ids),
        kind=chat_kind(ids),
        participant_ids=ids,
        encryption_fingerprint=fingerprint or "",
        created_at=_now(now),
    )
    doc.chats.append(chat)
    return chat


def rename_chat(doc: Document, chat_id: str, user_id: str, name: str) -> Chat:
    chat = require_chat(doc, chat_id, user_id)
    name = (name or "").strip()
    if not name:
        raise InvalidRequest("chat name is required")
    chat.name = name[:CHAT_NAME_MAX]
    return chat


def clear_chat(doc: Document, chat_id: str, user_id: str) -> int:
    require_chat(doc, chat_id, user_id)
    before = len(doc.messages)
    doc.messages = [m for m in doc.messages if m.chat_id != chat_id]
    return before - len(doc.messages)


def delete_chat(doc: Document, chat_id: str, user_id: str) -> Chat:
    chat = require_chat(doc, chat_id, user_id)
    doc.chats = [c for c in doc.chats if c.id != chat_id]
    doc.messages = [m for m in doc.messages if m.chat_id != chat_id]
    return chat


def rotate_chat_key(doc: Document, chat_id: str, user_id: str, fingerprint: str,
                    now: Optional[int] = None) -> Chat:
    """Replace a chat with a fresh one under a new key; old messages are unreadable anyway."""
    old = require_chat(doc, chat_id, user_id)
    if not fingerprint:
        raise InvalidRequest("new encryption fingerprint is required")
    delete_chat(doc, chat_id, user_id)
    chat = Chat(
        id=new_id(),
        name=old.name,
        kind=old.kind,
        participant_ids=list(old.participant_ids),
        encryption_fingerprint=fingerprint,
        created_at=_now(now),
    )
    doc.chats.append(chat)
    return chat


def chats_for(doc: Document, user_id: str) -> List[Chat]:
    return [c for c in doc.chats if user_id in c.participant_ids]


# messages

def append_message(doc: Document, chat_id: str, from_user_id: str,
                   payload: Union[EncryptedPayload, dict], mentions: Iterable[str] = (),
                   now: Optional[int] = None) -> Message:
    if doc.global_flags.messages_paused:
        raise Disabled("sending messages is paused")
    require_chat(doc, chat_id, from_user_id)
    if not isinstance(payload, EncryptedPayload):
        payload = EncryptedPayload.model_validate(payload)

    # strictly increasing per chat even when the clock has not moved
    last = max((m.ts for m in doc.messages if m.chat_id == chat_id), default=0)
    unique_mentions = []
    for uid in mentions:
        if uid not in unique_mentions:
            unique_mentions.append(uid)
    msg = Message(
        id=new_id(),
        chat_id=chat_id,
        from_user_id=from_user_id,
        payload=payload,
        mentions=unique_mentions,
        ts=max(_now(now), last + 1),
    )
    doc.messages.append(msg)
    return msg


def messages_in(doc: Document, chat_id: str) -> List[Message]:
    # sorted() is stable, so equal ts keep insertion order
    return sorted((m for m in doc.messages if m.chat_id == chat_id), key=lambda m: m.ts)


# flags

def set_flag(doc: Document, name: str, value: bool) -> GlobalFlags:
    if name not in FLAG_NAMES:
        raise InvalidRequest(f"unknown flag {name!r}")
    setattr(doc.global_flags, name, bool(value))
    return doc.global_flags


def global_logout(doc: Document, now: Optional[int] = None) -> GlobalFlags:
    doc.global_flags.global_logout_at = _now(now)
    return doc.global_flags
