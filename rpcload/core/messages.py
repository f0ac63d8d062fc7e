"""Request/response envelope and correlation tags"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional


class MsgType(IntEnum):
    """Message type tags carried in the envelope"""

    REQUEST = 1
    RESPONSE = 2


class RpcCode(IntEnum):
    """Result codes reported on responses"""

    SUCCESS = 0
    APP_ERROR = 1
    NETWORK_UNAVAIL = 2
    MAX_SESSIONS = 3
    TIMEOUT = 4


class RpcLoadError(Exception):
    """Base class for load client errors"""


class FlowControlError(RpcLoadError):
    """A response could not be paired with exactly one outstanding request"""


@dataclass(frozen=True)
class WorkerToken:
    """Correlation tag naming exactly one worker by its slot in the worker table"""

    index: int

    def __str__(self):
        return f"worker#{self.index}"


@dataclass
class RpcMessage:
    """Transient per-call envelope"""

    payload: Optional[bytearray]
    length: int
    tag: Optional[WorkerToken]
    msg_type: MsgType = MsgType.REQUEST
    code: RpcCode = RpcCode.SUCCESS

    @property
    def ok(self) -> bool:
        return self.code == RpcCode.SUCCESS

    def make_response(self, code: RpcCode = RpcCode.SUCCESS,
                      payload: Optional[bytearray] = None) -> 'RpcMessage':
        """Build the response envelope for this request, keeping its tag"""
        return RpcMessage(
            payload=payload,
            length=len(payload) if payload is not None else 0,
            tag=self.tag,
            msg_type=MsgType.RESPONSE,
            code=code,
        )
