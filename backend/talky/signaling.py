from typing import Any, Callable, List, Optional

from .errors import InvalidRequest, NotFound
from .models import Document, SignalingEvent, now_ms

SIGNAL_KINDS = ("offer", "answer", "candidate")


def _call_for(doc: Document, call_id: str, user_id: Optional[str]):
    call = doc.call(call_id)
    if call is None or (user_id is not None and not call.involves(user_id)):
        raise NotFound("call not found or not yours")
    return call


def append_signal(doc: Document, call_id: str, kind: str, data: Any,
                  user_id: Optional[str] = None, now: Optional[int] = None) -> SignalingEvent:
    call = _call_for(doc, call_id, user_id)
    if call.status == "ended":
        raise NotFound("call not found or not yours")
    if kind not in SIGNAL_KINDS:
        raise InvalidRequest(f"signal kind must be one of {', '.join(SIGNAL_KINDS)}")
    # strictly increasing per call, so a `ts > since` cursor never skips one
    last = max((e.ts for e in doc.signaling_events if e.call_id == call_id), default=0)
    event = SignalingEvent(
        call_id=call_id,
        kind=kind,
        data=data,
        ts=max(now if now is not None else now_ms(), last + 1),
        from_user_id=user_id,
    )
    doc.signaling_events.append(event)
    return event


def signals_since(doc: Document, call_id: str, since: int = 0,
                  user_id: Optional[str] = None) -> List[SignalingEvent]:
    """Events newer than `since` in ts order, minus the poller's own."""
    _call_for(doc, call_id, user_id)
    events = [e for e in doc.signaling_events
              if e.call_id == call_id and e.ts > since
              and (user_id is None or e.from_user_id != user_id)]
    return sorted(events, key=lambda e: e.ts)


class SignalRelay:
    """
    Moves opaque offer/answer/candidate payloads between the two peers of a call.

    Delivery is at-least-once and ordered by ts; peers must apply events
    idempotently. The relay never looks inside `data`.
    """

    def post(self, call_id: str, kind: str, data: Any, user_id: Optional[str] = None) -> SignalingEvent:
        raise NotImplementedError

    def poll(self, call_id: str, since: int = 0, user_id: Optional[str] = None) -> List[SignalingEvent]:
        raise NotImplementedError


class DocumentSignalRelay(SignalRelay):
    """Signals kept in the document and fetched by polling with a ts cursor."""

    def __init__(self, store, clock=now_ms, sweep: Optional[Callable[[Document], Document]] = None):
        self.store = store
        self._clock = clock
        # run on the document before each post so expired rings reject signals
        self._sweep = sweep

    def post(self, call_id: str, kind: str, data: Any, user_id: Optional[str] = None) -> SignalingEvent:
        result = []

        def fn(doc: Document) -> Document:
            if self._sweep is not None:
                self._sweep(doc)
            result.append(append_signal(doc, call_id, kind, data, user_id=user_id, now=self._clock()))
            return doc

        self.store.mutate(fn, label=f"Signal {kind} on call {call_id}")
        return result[0]

    def poll(self, call_id: str, since: int = 0, user_id: Optional[str] = None) -> List[SignalingEvent]:
        return signals_since(self.store.load(), call_id, since, user_id=user_id)
