from .base import ConnType, PayloadAllocator, Transport, TransportConfig, TransportInitError
from .loopback import LoopbackTransport
from .rpyc_transport import RPyCTransport

__all__ = [
    'ConnType',
    'PayloadAllocator',
    'Transport',
    'TransportConfig',
    'TransportInitError',
    'LoopbackTransport',
    'RPyCTransport',
]
