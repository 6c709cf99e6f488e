import logging
from typing import Any, Callable, List, Optional

from . import config
from .errors import Disabled, Forbidden, InvalidRequest, NotFound
from .models import Call, Document, SignalingEvent, new_id, now_ms
from .ops import require_chat, require_user
from .signaling import DocumentSignalRelay, SignalRelay

logger = logging.getLogger("talky.calls")

CALL_KINDS = ("audio", "video")


def add_call(doc: Document, caller_id: str, callee_id: str, kind: str,
             chat_id: Optional[str] = None, now: Optional[int] = None) -> Call:
    if doc.global_flags.calls_paused:
        raise Disabled("calls are paused")
    if kind not in CALL_KINDS:
        raise InvalidRequest("call kind must be audio or video")
    require_user(doc, caller_id)
    require_user(doc, callee_id)
    if caller_id == callee_id:
        raise InvalidRequest("cannot call yourself")
    if chat_id is not None:
        chat = require_chat(doc, chat_id, caller_id)
        if callee_id not in chat.participant_ids:
            raise NotFound("chat not found")
    now = now if now is not None else now_ms()
    call = Call(
        id=new_id(),
        kind=kind,
        caller_user_id=caller_id,
        callee_user_id=callee_id,
        chat_id=chat_id,
        status="ringing",
        created_at=now,
        updated_at=now,
    )
    doc.calls.append(call)
    return call


def accept_call(doc: Document, call_id: str, user_id: str, now: Optional[int] = None) -> Call:
    call = doc.call(call_id)
    if call is None or call.status != "ringing" or not call.involves(user_id):
        raise NotFound("call not found or not yours")
    if call.callee_user_id != user_id:
        raise Forbidden("only the callee can accept this call")
    call.status = "connected"
    call.updated_at = now if now is not None else now_ms()
    return call


def end_call(doc: Document, call_id: str, user_id: str, now: Optional[int] = None) -> Call:
    call = doc.call(call_id)
    if call is None or call.status == "ended" or not call.involves(user_id):
        raise NotFound("call not found or not yours")
    call.status = "ended"
    call.updated_at = now if now is not None else now_ms()
    return call


def sweep_calls(doc: Document, now: int, ring_ttl_ms: int, retention_ms: int) -> bool:
    """End rings older than the TTL, prune ended calls past retention with their signals.

    Returns True when the document changed.
    """
    changed = False
    for call in doc.calls:
        if call.status == "ringing" and now - call.created_at >= ring_ttl_ms:
            call.status = "ended"
            call.updated_at = now
            changed = True

    stale = {c.id for c in doc.calls if c.status == "ended" and now - c.updated_at >= retention_ms}
    if stale:
        doc.calls = [c for c in doc.calls if c.id not in stale]
        doc.signaling_events = [e for e in doc.signaling_events if e.call_id not in stale]
        changed = True
    return changed


class CallService:
    """Call lifecycle on top of the store: ringing -> connected -> ended.

    Expiry is lazy: stale rings are swept whenever calls are read, so they
    never pile up and nothing needs a timer.
    """

    def __init__(self, store, relay: Optional[SignalRelay] = None,
                 ring_ttl: int = config.CALL_RING_TTL_SECONDS,
                 retention: int = config.CALL_RETENTION_SECONDS,
                 clock: Callable[[], int] = now_ms):
        self.store = store
        self.ring_ttl_ms = ring_ttl * 1000
        self.retention_ms = retention * 1000
        self._clock = clock
        self.relay = relay or DocumentSignalRelay(store, clock=clock, sweep=self._sweep)

    def _sweep(self, doc: Document) -> Document:
        sweep_calls(doc, self._clock(), self.ring_ttl_ms, self.retention_ms)
        return doc

    def _read(self) -> Document:
        doc = self.store.load()
        if sweep_calls(doc, self._clock(), self.ring_ttl_ms, self.retention_ms):
            logger.info("sweeping expired and stale calls")
            doc = self.store.mutate(self._sweep, label="Expire stale calls")
        return doc

    def _transition(self, op, call_id: str, user_id: str, label: str) -> Call:
        result = []

        def fn(doc: Document) -> Document:
            self._sweep(doc)
            result.append(op(doc, call_id, user_id, now=self._clock()))
            return doc

        self.store.mutate(fn, label=label)
        return result[0]

    def create_call(self, caller_id: str, callee_id: str, kind: str,
                    chat_id: Optional[str] = None) -> Call:
        call = self.store.apply(add_call, caller_id, callee_id, kind, chat_id=chat_id,
                                now=self._clock(), label=f"Start {kind} call")
        logger.info("call %s ringing: %s -> %s", call.id, caller_id, callee_id)
        return call

    def list_pending_calls_for(self, user_id: str) -> List[Call]:
        doc = self._read()
        return [c for c in doc.calls if c.callee_user_id == user_id and c.status == "ringing"]

    def list_calls_for(self, user_id: str) -> List[Call]:
        doc = self._read()
        return [c for c in doc.calls if c.involves(user_id)]

    def get_call(self, call_id: str, user_id: Optional[str] = None) -> Call:
        call = self._read().call(call_id)
        if call is None or (user_id is not None and not call.involves(user_id)):
            raise NotFound("call not found or not yours")
        return call

    def accept_call(self, call_id: str, by_user_id: str) -> Call:
        call = self._transition(accept_call, call_id, by_user_id, f"Accept call {call_id}")
        logger.info("call %s connected", call_id)
        return call

    def decline_call(self, call_id: str, by_user_id: str) -> Call:
        call = self._transition(end_call, call_id, by_user_id, f"End call {call_id}")
        logger.info("call %s ended by %s", call_id, by_user_id)
        return call

    hangup_call = decline_call

    def post_signal(self, call_id: str, kind: str, data: Any,
                    user_id: Optional[str] = None) -> SignalingEvent:
        return self.relay.post(call_id, kind, data, user_id=user_id)

    def poll_signals(self, call_id: str, since: int = 0,
                     user_id: Optional[str] = None) -> List[SignalingEvent]:
        return self.relay.poll(call_id, since, user_id=user_id)
