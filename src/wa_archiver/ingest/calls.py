"""Turns call lifecycle events into start/end message records."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional

from wa_archiver.core.timeutil import format_duration
from wa_archiver.core.types import MessageType
from wa_archiver.whatsapp.base import CallEvent, CallStatus

_START_STATUSES = frozenset({CallStatus.OFFER, CallStatus.RINGING})
_END_STATUSES = frozenset({CallStatus.REJECT, CallStatus.TIMEOUT, CallStatus.TERMINATE})

# Calls whose end event never arrives are forgotten after this long.
MAX_CALL_AGE = 6 * 3600


@dataclass(slots=True)
class _ObservedCall:
    offered_at: float
    accepted_at: Optional[float] = None


@dataclass(frozen=True, slots=True)
class CallRecord:
    message_id: str
    message_type: MessageType
    content: str
    ended: bool


class CallTracker:
    """Remembers when each call was offered and accepted, as seen locally.

    Durations are measured with this process's clock, so they are only as
    accurate as event delivery is prompt.
    """

    def __init__(self, clock: Callable[[], float] = time.time, max_age: float = MAX_CALL_AGE):
        self._clock = clock
        self._max_age = max_age
        self._calls: dict[str, _ObservedCall] = {}

    def __len__(self) -> int:
        return len(self._calls)

    def observe(self, event: CallEvent, outgoing: bool = False) -> Optional[CallRecord]:
        try:
            status = CallStatus(event.status)
        except ValueError:
            return None
        now = self._clock()
        message_type = MessageType.VIDEO_CALL if event.is_video else MessageType.CALL

        if status in _START_STATUSES:
            if event.call_id in self._calls:
                return None
            self._prune(now)
            self._calls[event.call_id] = _ObservedCall(offered_at=now)
            direction = "Outgoing" if outgoing else "Incoming"
            label = "video call" if event.is_video else "call"
            return CallRecord(
                message_id=f"call_{event.call_id}_start",
                message_type=message_type,
                content=f"{direction} {label}",
                ended=False,
            )

        if status == CallStatus.ACCEPT:
            observed = self._calls.setdefault(event.call_id, _ObservedCall(offered_at=now))
            observed.accepted_at = now
            return None

        if status in _END_STATUSES:
            observed = self._calls.pop(event.call_id, None)
            return CallRecord(
                message_id=f"call_{event.call_id}_end",
                message_type=message_type,
                content=self._outcome(status, observed, now),
                ended=True,
            )

        return None

    def _prune(self, now: float) -> None:
        stale = [cid for cid, call in self._calls.items() if now - call.offered_at > self._max_age]
        for call_id in stale:
            del self._calls[call_id]

    @staticmethod
    def _outcome(status: CallStatus, observed: Optional[_ObservedCall], now: float) -> str:
        if status == CallStatus.REJECT:
            return "Call rejected"
        if status == CallStatus.TIMEOUT:
            return "Missed call"
        if observed is None:
            return "Call ended"
        if observed.accepted_at is None:
            return "Missed call"
        return f"Call ended - duration {format_duration(now - observed.accepted_at)}"
