from fastapi import APIRouter, Depends, Query, Request

from .auth import auth_required
from .calls import CallService
from .models import User
from .schemas import CallCreateIn, SignalIn, dump

router = APIRouter(prefix="/api/calls", tags=["calls"])


def _calls(request: Request) -> CallService:
    return request.app.state.calls


@router.post("", status_code=201)
def create_call(data: CallCreateIn, me: User = Depends(auth_required),
                calls: CallService = Depends(_calls)):
    call = calls.create_call(me.id, data.callee_id, data.kind, chat_id=data.chat_id)
    return {"call": dump(call)}


@router.get("")
def list_calls(me: User = Depends(auth_required), calls: CallService = Depends(_calls)):
    return {"calls": [dump(c) for c in calls.list_calls_for(me.id)]}


@router.get("/pending")
def pending_calls(me: User = Depends(auth_required), calls: CallService = Depends(_calls)):
    return {"calls": [dump(c) for c in calls.list_pending_calls_for(me.id)]}


@router.get("/{call_id}")
def get_call(call_id: str, me: User = Depends(auth_required), calls: CallService = Depends(_calls)):
    return {"call": dump(calls.get_call(call_id, me.id))}


@router.post("/{call_id}/accept")
def accept_call(call_id: str, me: User = Depends(auth_required),
                calls: CallService = Depends(_calls)):
    return {"call": dump(calls.accept_call(call_id, me.id))}


@router.post("/{call_id}/decline")
def decline_call(call_id: str, me: User = Depends(auth_required),
                 calls: CallService = Depends(_calls)):
    return {"call": dump(calls.decline_call(call_id, me.id))}


@router.post("/{call_id}/hangup")
def hangup_call(call_id: str, me: User = Depends(auth_required),
                calls: CallService = Depends(_calls)):
    return {"call": dump(calls.hangup_call(call_id, me.id))}


@router.post("/{call_id}/signals", status_code=201)
def post_signal(call_id: str, data: SignalIn, me: User = Depends(auth_required),
                calls: CallService = Depends(_calls)):
    event = calls.post_signal(call_id, data.kind, data.data, user_id=me.id)
    return {"event": dump(event)}


@router.get("/{call_id}/signals")
def poll_signals(call_id: str, since: int = Query(0, ge=0), me: User = Depends(auth_required),
                 calls: CallService = Depends(_calls)):
    events = calls.poll_signals(call_id, since, user_id=me.id)
    call = calls.get_call(call_id, me.id)
    return {
        "events": [dump(e) for e in events],
        "cursor": events[-1].ts if events else since,
        "status": call.status,
    }
