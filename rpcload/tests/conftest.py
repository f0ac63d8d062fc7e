"""Pytest configuration and fixtures"""

import logging
import socket

import pytest

from rpcload.config import ClientConfig
from rpcload.core.client import LoadClient
from rpcload.transport.loopback import LoopbackTransport


def find_free_port():
    """Find a free port for testing"""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('', 0))
        s.listen(1)
        port = s.getsockname()[1]
    return port


@pytest.fixture
def rpyc_port():
    """Provide a free port for an RPyC echo server"""
    return find_free_port()


@pytest.fixture
def unused_port():
    """A port nothing listens on"""
    return find_free_port()


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo setup_logging() so caplog keeps seeing package records"""
    yield
    logger = logging.getLogger("rpcload")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def loopback_client():
    """
    Build a LoadClient on a loopback transport and keep the transport
    reachable after the run for inspection.
    """
    def make(handler=None, latency=0.0, record_history=False, **config_kwargs):
        config_kwargs.setdefault('transport_name', 'loopback')
        config = ClientConfig(**config_kwargs)
        opened = []

        def factory(transport_config):
            transport = LoopbackTransport.open(
                transport_config,
                handler=handler,
                latency=latency,
                record_history=record_history,
            )
            opened.append(transport)
            return transport

        client = LoadClient(config, transport_factory=factory, measure_system=False)
        return client, opened

    return make
