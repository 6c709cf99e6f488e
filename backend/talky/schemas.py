from typing import Any, List, Literal, Optional

from pydantic import Field

from .models import EncryptedPayload, Record, User


class CredentialsIn(Record):
    username: str
    password: str


class ProfileUpdateIn(Record):
    username: Optional[str] = None
    password: Optional[str] = None


class ChatCreateIn(Record):
    name: Optional[str] = None
    participant_ids: List[str] = Field(default_factory=list)
    encryption_fingerprint: str = ""


class ChatRenameIn(Record):
    name: str


class RotateKeyIn(Record):
    encryption_fingerprint: str


class MessageIn(Record):
    chat_id: str
    payload: EncryptedPayload
    mentions: List[str] = Field(default_factory=list)


class CallCreateIn(Record):
    callee_id: str
    kind: Literal["audio", "video"] = "audio"
    chat_id: Optional[str] = None


class SignalIn(Record):
    kind: Literal["offer", "answer", "candidate"]
    data: Any = None


class AdminLoginIn(Record):
    password: str


class AdminUserUpdateIn(Record):
    username: Optional[str] = None
    password: Optional[str] = None
    is_admin: Optional[bool] = None


class FlagsIn(Record):
    messages_paused: Optional[bool] = None
    calls_paused: Optional[bool] = None


def dump(model) -> dict:
    return model.model_dump(by_alias=True, mode="json")


def public_user(user: User) -> dict:
    return user.model_dump(by_alias=True, mode="json", exclude={"password_hash"})
