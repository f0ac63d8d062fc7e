"""Load client configuration"""

from dataclasses import dataclass, field
from typing import List

from rpcload.core.endpoints import Endpoint, EndpointSet
from rpcload.core.worker import PROGRESS_INTERVAL
from rpcload.transport.base import TransportConfig


@dataclass
class ClientConfig:
    """Everything a load run needs besides the transport instance"""

    host: str = "127.0.0.1"
    port: int = 7000
    # second entry of the endpoint table, only used when num_endpoints is 2
    alt_host: str = "192.168.0.1"
    alt_port: int = 7000
    num_endpoints: int = 1

    app_threads: int = 1
    msg_size: int = 128
    num_requests: int = 0  # per worker, 0 runs until stopped
    progress_interval: int = PROGRESS_INTERVAL
    poll_interval: float = 1e-6

    transport_name: str = "rpyc"
    transport: TransportConfig = field(default_factory=TransportConfig)

    def __post_init__(self):
        if self.app_threads < 1:
            raise ValueError("app_threads must be at least 1")
        if self.msg_size < 0:
            raise ValueError("msg_size must not be negative")
        if self.num_requests < 0:
            raise ValueError("num_requests must not be negative")
        if self.num_endpoints not in (1, 2):
            raise ValueError("num_endpoints must be 1 or 2")

    def endpoint_set(self) -> EndpointSet:
        """Fresh endpoint set; each worker gets its own"""
        endpoints: List[Endpoint] = [Endpoint(self.host, self.port, self.port)]
        if self.num_endpoints == 2:
            endpoints.append(Endpoint(self.alt_host, self.alt_port, self.alt_port))
        return EndpointSet(endpoints, in_use=0)
