"""
Registry of active call sessions.

The websocket manager registers each call session while its socket is open so
the health endpoint can report live calls and shutdown can find them.
"""

from typing import TYPE_CHECKING, Dict, Optional

if TYPE_CHECKING:
    from voice_gateway.bot.call_session import CallSession


class CallRegistry:
    """
    Tracks the call sessions currently attached to a telephony socket.

    Sessions are keyed by an id assigned at socket accept, since the provider's
    stream id is only known after the ``start`` event.
    """

    def __init__(self):
        self.active_sessions: Dict[str, "CallSession"] = {}

    def add_session(self, session_id: str, session: "CallSession"):
        self.active_sessions[session_id] = session

    def get_session(self, session_id: str) -> Optional["CallSession"]:
        return self.active_sessions.get(session_id)

    def remove_session(self, session_id: str):
        self.active_sessions.pop(session_id, None)

    def get_all_sessions(self) -> Dict[str, "CallSession"]:
        return self.active_sessions

    def __len__(self) -> int:
        return len(self.active_sessions)
