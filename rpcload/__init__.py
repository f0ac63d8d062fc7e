"""Concurrent RPC load-generation client"""

from rpcload.config import ClientConfig
from rpcload.core.client import LoadClient
from rpcload.core.completion import CompletionTracker
from rpcload.core.endpoints import Endpoint, EndpointSet
from rpcload.core.messages import (
    FlowControlError,
    MsgType,
    RpcCode,
    RpcLoadError,
    RpcMessage,
    WorkerToken,
)
from rpcload.core.metrics import LoadMetrics
from rpcload.core.worker import WorkerState
from rpcload.transport.base import Transport, TransportConfig, TransportInitError
from rpcload.transport.loopback import LoopbackTransport

try:
    from importlib.metadata import version, PackageNotFoundError
except ImportError:
    from importlib_metadata import version, PackageNotFoundError

try:
    __version__ = version("rpcload")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"
__all__ = [
    "ClientConfig",
    "LoadClient",
    "CompletionTracker",
    "Endpoint",
    "EndpointSet",
    "FlowControlError",
    "MsgType",
    "RpcCode",
    "RpcLoadError",
    "RpcMessage",
    "WorkerToken",
    "LoadMetrics",
    "WorkerState",
    "Transport",
    "TransportConfig",
    "TransportInitError",
    "LoopbackTransport",
]
