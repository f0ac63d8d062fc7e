"""Failover-capable endpoint sets"""

from dataclasses import dataclass, field
from typing import List, Tuple


@dataclass(frozen=True)
class Endpoint:
    """One candidate server address"""

    host: str
    port: int
    alt_port: int

    @property
    def address(self) -> Tuple[str, int]:
        return (self.host, self.port)

    def __str__(self):
        return f"{self.host}:{self.port}"


@dataclass
class EndpointSet:
    """
    Ordered candidate endpoints plus the index of the one in use.

    Each worker holds its own copy. The only mutation is adopt_redirect(),
    which the response callback applies on behalf of the owning worker.
    """

    endpoints: List[Endpoint] = field(default_factory=list)
    in_use: int = 0

    def __post_init__(self):
        if not self.endpoints:
            raise ValueError("EndpointSet needs at least one endpoint")
        self._check_index(self.in_use, self.endpoints)

    @staticmethod
    def _check_index(in_use: int, endpoints: List[Endpoint]):
        if not 0 <= in_use < len(endpoints):
            raise ValueError(
                f"in_use index {in_use} outside of {len(endpoints)} endpoints"
            )

    @classmethod
    def single(cls, host: str, port: int, alt_port: int = None) -> 'EndpointSet':
        return cls([Endpoint(host, port, port if alt_port is None else alt_port)])

    @property
    def active(self) -> Endpoint:
        """Endpoint the next request goes to"""
        return self.endpoints[self.in_use]

    def copy(self) -> 'EndpointSet':
        return EndpointSet(list(self.endpoints), self.in_use)

    def adopt_redirect(self, hint: 'EndpointSet'):
        """Replace endpoint data and active index with the transport's hint"""
        endpoints = list(hint.endpoints)
        self._check_index(hint.in_use, endpoints)
        # single assignment each, readers only ever look at their own set
        self.endpoints = endpoints
        self.in_use = hint.in_use

    def __len__(self):
        return len(self.endpoints)
