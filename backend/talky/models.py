import time
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid4().hex


class Record(BaseModel):
    # persisted with camelCase keys, e.g. participantIds, globalLogoutAt
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(Record):
    id: str
    username: str
    password_hash: str
    is_admin: bool = False
    created_at: int


class Chat(Record):
    id: str
    name: str
    kind: Literal["direct", "group"]
    participant_ids: List[str]
    encryption_fingerprint: str = ""
    created_at: int


class EncryptedPayload(Record):
    """Ciphertext as produced by the client. Never decrypted server side."""
    model_config = ConfigDict(extra="allow")

    ciphertext: str
    nonce: str
    key_hash: Optional[str] = None


class Message(Record):
    id: str
    chat_id: str
    from_user_id: str
    payload: EncryptedPayload
    mentions: List[str] = Field(default_factory=list)
    ts: int


class Call(Record):
    id: str
    kind: Literal["audio", "video"]
    caller_user_id: str
    callee_user_id: str
    chat_id: Optional[str] = None
    status: Literal["ringing", "connected", "ended"] = "ringing"
    created_at: int
    updated_at: int

    def involves(self, user_id: str) -> bool:
        return user_id in (self.caller_user_id, self.callee_user_id)


class SignalingEvent(Record):
    call_id: str
    kind: Literal["offer", "answer", "candidate"]
    data: Any = None
    ts: int
    from_user_id: Optional[str] = None


class GlobalFlags(Record):
    messages_paused: bool = False
    calls_paused: bool = False
    global_logout_at: int = 0


class Document(Record):
    users: List[User] = Field(default_factory=list)
    chats: List[Chat] = Field(default_factory=list)
    messages: List[Message] = Field(default_factory=list)
    calls: List[Call] = Field(default_factory=list)
    signaling_events: List[SignalingEvent] = Field(default_factory=list)
    global_flags: GlobalFlags = Field(default_factory=GlobalFlags)
    # opaque backend token, attached after each load/write, never persisted
    version: Optional[str] = Field(default=None, exclude=True)

    def deep_copy(self) -> "Document":
        return self.model_copy(deep=True)

    def user(self, user_id: str) -> Optional[User]:
        return next((u for u in self.users if u.id == user_id), None)

    def user_by_name(self, username: str) -> Optional[User]:
        wanted = username.strip().lower()
        return next((u for u in self.users if u.username.lower() == wanted), None)

    def chat(self, chat_id: str) -> Optional[Chat]:
        return next((c for c in self.chats if c.id == chat_id), None)

    def call(self, call_id: str) -> Optional[Call]:
        return next((c for c in self.calls if c.id == call_id), None)


def encode_document(doc: Document) -> bytes:
    return doc.model_dump_json(by_alias=True, indent=2).encode("utf-8")


def decode_document(content: bytes, version: Optional[str] = None) -> Document:
    if not content or not content.strip():
        doc = Document()
    else:
        doc = Document.model_validate_json(content)
    doc.version = version
    return doc


def integrity_problems(doc: Document) -> List[str]:
    """Cross-collection checks the store does not enforce on write.

    Referential integrity after user deletion is the caller's job, so these
    are reported rather than repaired.
    """
    problems = []
    user_ids = [u.id for u in doc.users]
    if len(set(user_ids)) != len(user_ids):
        problems.append("duplicate user ids")
    names = [u.username.lower() for u in doc.users]
    if len(set(names)) != len(names):
        problems.append("duplicate usernames")

    chat_ids = set()
    for chat in doc.chats:
        chat_ids.add(chat.id)
        if not chat.participant_ids:
            problems.append(f"chat {chat.id} has no participants")
        expected = "direct" if len(chat.participant_ids) == 2 else "group"
        if chat.kind != expected:
            problems.append(f"chat {chat.id} kind {chat.kind} should be {expected}")

    for msg in doc.messages:
        if msg.chat_id not in chat_ids:
            problems.append(f"message {msg.id} references missing chat {msg.chat_id}")

    call_ids = {c.id for c in doc.calls}
    orphans = {e.call_id for e in doc.signaling_events if e.call_id not in call_ids}
    for call_id in sorted(orphans):
        problems.append(f"signaling events reference missing call {call_id}")
    return problems


_COLLECTIONS = ("users", "chats", "messages", "calls", "signaling_events")


def _key(collection: str, item):
    if collection == "signaling_events":
        return (item.call_id, item.ts, item.kind, item.from_user_id)
    return item.id


def _merge_collection(collection: str, base: List, ours: List, theirs: List) -> List:
    if theirs == base:
        return list(ours)
    if ours == base:
        return list(theirs)
    base_map = {_key(collection, x): x for x in base}
    ours_map = {_key(collection, x): x for x in ours}
    merged = []
    seen = set()
    for item in theirs:
        key = _key(collection, item)
        seen.add(key)
        if key in ours_map:
            mine = ours_map[key]
            changed_by_us = key not in base_map or mine != base_map[key]
            merged.append(mine if changed_by_us else item)
        elif key in base_map:
            # deleted on our side
            continue
        else:
            merged.append(item)
    for item in ours:
        key = _key(collection, item)
        if key not in seen and key not in base_map:
            merged.append(item)
    return merged


def same_content(a: Document, b: Document) -> bool:
    return a.global_flags == b.global_flags and all(
        getattr(a, c) == getattr(b, c) for c in _COLLECTIONS)


def merge_documents(base: Document, ours: Document, theirs: Document) -> Document:
    """Three-way merge keyed by record id.

    Our additions, edits and deletions relative to `base` are replayed on top
    of `theirs`. When `theirs` equals `base` the result equals `ours`.
    """
    merged = theirs.deep_copy()
    for collection in _COLLECTIONS:
        setattr(merged, collection, _merge_collection(
            collection,
            getattr(base, collection),
            getattr(ours, collection),
            getattr(theirs, collection),
        ))
    if ours.global_flags != base.global_flags:
        merged.global_flags = ours.global_flags.model_copy()
    merged.version = theirs.version
    return merged.deep_copy()
