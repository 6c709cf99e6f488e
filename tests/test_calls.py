import pytest

from talky import accounts, chats
from talky.errors import Disabled, Forbidden, InvalidRequest, NotFound

HOUR_MS = 3600 * 1000


def test_call_lifecycle(calls, alice, bob):
    call = calls.create_call(alice.id, bob.id, "audio")
    assert call.status == "ringing"
    assert [c.id for c in calls.list_pending_calls_for(bob.id)] == [call.id]
    assert calls.list_pending_calls_for(alice.id) == []

    accepted = calls.accept_call(call.id, bob.id)
    assert accepted.status == "connected"
    assert calls.list_pending_calls_for(bob.id) == []
    with pytest.raises(NotFound):
        calls.accept_call(call.id, bob.id)

    ended = calls.decline_call(call.id, alice.id)
    assert ended.status == "ended"
    assert calls.get_call(call.id, bob.id).status == "ended"


def test_accept_is_callee_only_and_hidden_from_outsiders(calls, alice, bob, carol):
    call = calls.create_call(alice.id, bob.id, "video")
    with pytest.raises(Forbidden):
        calls.accept_call(call.id, alice.id)
    with pytest.raises(NotFound):
        calls.accept_call(call.id, carol.id)
    assert calls.get_call(call.id).status == "ringing"


def test_outsiders_cannot_see_or_end_a_call(calls, alice, bob, carol):
    call = calls.create_call(alice.id, bob.id, "audio")
    with pytest.raises(NotFound):
        calls.get_call(call.id, carol.id)
    with pytest.raises(NotFound):
        calls.hangup_call(call.id, carol.id)
    assert calls.list_calls_for(carol.id) == []
    assert [c.id for c in calls.list_calls_for(alice.id)] == [call.id]


def test_callee_can_decline_while_ringing(calls, alice, bob):
    call = calls.create_call(alice.id, bob.id, "audio")
    assert calls.decline_call(call.id, bob.id).status == "ended"
    with pytest.raises(NotFound):
        calls.hangup_call(call.id, alice.id)


def test_unanswered_call_expires(calls, clock, alice, bob):
    call = calls.create_call(alice.id, bob.id, "audio")
    clock.advance(HOUR_MS - 1)
    assert len(calls.list_pending_calls_for(bob.id)) == 1

    clock.advance(1)
    assert calls.list_pending_calls_for(bob.id) == []
    assert calls.get_call(call.id).status == "ended"
    with pytest.raises(NotFound):
        calls.accept_call(call.id, bob.id)


def test_connected_call_does_not_expire(calls, clock, alice, bob):
    call = calls.create_call(alice.id, bob.id, "audio")
    calls.accept_call(call.id, bob.id)
    clock.advance(2 * HOUR_MS)
    assert calls.get_call(call.id).status == "connected"


def test_ended_calls_are_pruned_with_their_signals(store, calls, clock, alice, bob):
    call = calls.create_call(alice.id, bob.id, "audio")
    calls.post_signal(call.id, "offer", {"sdp": "x"}, user_id=alice.id)
    calls.hangup_call(call.id, alice.id)

    clock.advance(HOUR_MS)
    assert calls.list_calls_for(alice.id) == []
    with pytest.raises(NotFound):
        calls.get_call(call.id)
    assert store.load().signaling_events == []


def test_create_call_validation(store, calls, alice, bob, carol):
    with pytest.raises(InvalidRequest):
        calls.create_call(alice.id, alice.id, "audio")
    with pytest.raises(InvalidRequest):
        calls.create_call(alice.id, bob.id, "hologram")
    with pytest.raises(NotFound):
        calls.create_call(alice.id, "nobody", "audio")

    chat = chats.create_chat(store, alice.id, "ab", [bob.id])
    in_chat = calls.create_call(alice.id, bob.id, "video", chat_id=chat.id)
    assert in_chat.chat_id == chat.id
    with pytest.raises(NotFound):
        calls.create_call(alice.id, carol.id, "audio", chat_id=chat.id)


def test_paused_calls_are_rejected(store, calls, alice, bob):
    accounts.set_flags(store, calls_paused=True)
    with pytest.raises(Disabled):
        calls.create_call(alice.id, bob.id, "audio")
    accounts.set_flags(store, calls_paused=False)
    assert calls.create_call(alice.id, bob.id, "audio").status == "ringing"
