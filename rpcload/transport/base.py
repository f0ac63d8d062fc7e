"""Narrow transport interface the load client drives"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from rpcload.core.endpoints import EndpointSet
from rpcload.core.messages import RpcLoadError, RpcMessage

ResponseCallback = Callable[[RpcMessage, Optional[EndpointSet]], None]


class TransportInitError(RpcLoadError):
    """The transport could not be opened"""


class ConnType(Enum):
    CLIENT = 'client'
    SERVER = 'server'


@dataclass
class TransportConfig:
    """Settings handed to Transport.open()"""

    num_threads: int = 1
    sessions: int = 100
    idle_time: float = 3.0  # seconds
    user: str = "michael"
    secret: str = "mypassword"
    ckey: str = "key"
    spi: int = 1
    compress_threshold: int = -1  # -1 disables compression
    conn_type: ConnType = ConnType.CLIENT
    label: str = "APP"
    on_response: Optional[ResponseCallback] = None


class PayloadAllocator:
    """Hands out payload buffers and counts the ones not yet released"""

    def __init__(self):
        self._lock = threading.Lock()
        self._outstanding = 0

    @property
    def outstanding(self) -> int:
        with self._lock:
            return self._outstanding

    def malloc(self, size: int) -> bytearray:
        if size < 0:
            raise ValueError(f"negative payload size: {size}")
        with self._lock:
            self._outstanding += 1
        return bytearray(size)

    def free(self, buf: Optional[bytearray]):
        if buf is None:
            return
        with self._lock:
            self._outstanding -= 1


class Transport(ABC):
    """
    Base class for transports.

    send_request() only enqueues; every request is completed later by one
    call to config.on_response, made from a thread the transport owns.
    """

    def __init__(self, config: TransportConfig):
        if config.on_response is None:
            raise TransportInitError("no response callback configured")
        if config.conn_type is not ConnType.CLIENT:
            raise TransportInitError(f"unsupported connection type: {config.conn_type.value}")
        if config.num_threads < 1:
            raise TransportInitError("transport needs at least one thread")
        if config.sessions < 1:
            raise TransportInitError("transport needs at least one session")
        self.config = config
        self.allocator = PayloadAllocator()
        self._in_flight = 0
        self._in_flight_lock = threading.Lock()

    @classmethod
    def open(cls, config: TransportConfig, **kwargs) -> 'Transport':
        """Create and start a transport, raising TransportInitError on failure"""
        transport = cls(config, **kwargs)
        try:
            transport.start()
        except TransportInitError:
            raise
        except Exception as e:
            raise TransportInitError(f"failed to initialize {cls.__name__}: {e}") from e
        return transport

    def start(self):
        """Acquire resources, called once by open()"""

    @abstractmethod
    def send_request(self, endpoints: EndpointSet, message: RpcMessage):
        """Queue a request for the active endpoint of endpoints"""

    @abstractmethod
    def close(self):
        """Release threads and connections"""

    def malloc_payload(self, size: int) -> bytearray:
        return self.allocator.malloc(size)

    def free_payload(self, buf: Optional[bytearray]):
        self.allocator.free(buf)

    @property
    def in_flight(self) -> int:
        with self._in_flight_lock:
            return self._in_flight

    def _acquire_session(self) -> bool:
        with self._in_flight_lock:
            if self._in_flight >= self.config.sessions:
                return False
            self._in_flight += 1
            return True

    def _release_session(self):
        with self._in_flight_lock:
            self._in_flight -= 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
