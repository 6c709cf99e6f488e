import json

from talky.models import (
    Chat,
    Document,
    GlobalFlags,
    User,
    decode_document,
    encode_document,
    integrity_problems,
    merge_documents,
)


def _user(uid, name):
    return User(id=uid, username=name, password_hash="h", created_at=1)


def test_encode_uses_camel_case_and_skips_version():
    doc = Document(users=[_user("u1", "alice")], version="abc")
    doc.global_flags.global_logout_at = 5
    raw = json.loads(encode_document(doc))
    assert set(raw) == {"users", "chats", "messages", "calls", "signalingEvents", "globalFlags"}
    assert raw["users"][0]["passwordHash"] == "h"
    assert raw["users"][0]["isAdmin"] is False
    assert raw["globalFlags"]["globalLogoutAt"] == 5
    assert "version" not in raw


def test_decode_attaches_version():
    doc = decode_document(encode_document(Document(users=[_user("u1", "alice")])), "sha1")
    assert doc.version == "sha1"
    assert doc.user("u1").username == "alice"


def test_decode_blank_content_is_empty_document():
    doc = decode_document(b"  \n", "v1")
    assert doc.users == [] and doc.global_flags == GlobalFlags()
    assert doc.version == "v1"


def test_user_by_name_is_case_insensitive():
    doc = Document(users=[_user("u1", "Alice")])
    assert doc.user_by_name(" alice ").id == "u1"
    assert doc.user_by_name("bob") is None


def test_integrity_problems_reports_bad_kind_and_orphans():
    doc = Document(
        users=[_user("u1", "alice"), _user("u2", "ALICE")],
        chats=[Chat(id="c1", name="x", kind="group", participant_ids=["u1", "u2"], created_at=1)],
    )
    problems = integrity_problems(doc)
    assert "duplicate usernames" in problems
    assert any("kind group should be direct" in p for p in problems)


def test_merge_keeps_both_sides_additions():
    base = Document(users=[_user("u1", "alice")])
    ours = base.deep_copy()
    ours.users.append(_user("u2", "bob"))
    theirs = base.deep_copy()
    theirs.users.append(_user("u3", "mallory"))
    merged = merge_documents(base, ours, theirs)
    assert [u.id for u in merged.users] == ["u1", "u3", "u2"]


def test_merge_applies_our_edits_and_deletions():
    base = Document(users=[_user("u1", "alice"), _user("u2", "bob")])
    ours = base.deep_copy()
    ours.users[0].username = "alicia"
    ours.users.pop(1)
    theirs = base.deep_copy()
    theirs.global_flags.calls_paused = True
    merged = merge_documents(base, ours, theirs)
    assert [u.username for u in merged.users] == ["alicia"]
    assert merged.global_flags.calls_paused is True


def test_merge_against_unchanged_remote_is_ours():
    base = Document(users=[_user("u1", "alice")])
    ours = base.deep_copy()
    ours.users.append(_user("u2", "bob"))
    ours.global_flags.messages_paused = True
    merged = merge_documents(base, ours, base.deep_copy())
    assert merged.users == ours.users
    assert merged.global_flags == ours.global_flags
