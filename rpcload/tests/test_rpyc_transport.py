"""Tests for the RPyC transport against a process-isolated echo server"""

import os
from types import SimpleNamespace

import pytest

from rpcload.config import ClientConfig
from rpcload.core.client import LoadClient
from rpcload.servers.rpyc_servers import RPyCServer, create_rpyc_connection
from rpcload.core.messages import MsgType, RpcCode, RpcMessage, WorkerToken
from rpcload.transport.base import TransportConfig
from rpcload.transport.rpyc_transport import RPyCTransport, decode_redirect


def rpyc_client(port, transport=None, **kwargs):
    """LoadClient on the RPyC transport, keeping the opened transport"""
    opened = []

    def factory(transport_config):
        opened.append(RPyCTransport.open(transport_config))
        return opened[-1]

    kwargs.setdefault('host', 'localhost')
    config = ClientConfig(
        port=port,
        transport_name='rpyc',
        transport=transport or TransportConfig(num_threads=2),
        **kwargs,
    )
    return LoadClient(config, transport_factory=factory, measure_system=False), opened


class TestEchoServer:
    """Test the echo server lifecycle"""

    def test_server_separate_process(self, rpyc_port):
        parent_pid = os.getpid()

        with RPyCServer(host='localhost', port=rpyc_port) as server:
            assert server.server_process.is_alive()
            assert server.server_process.pid != parent_pid

            conn = create_rpyc_connection('localhost', rpyc_port)
            assert conn.root.ping() == "pong"
            code, data, redirect = conn.root.process(1, b'abc', False)
            assert (code, data, redirect) == (0, b'abc', None)
            conn.close()

        assert not server.server_process.is_alive()


class TestRPyCRuns:
    """Full runs over RPyC"""

    def test_finite_run(self, rpyc_port):
        with RPyCServer(host='localhost', port=rpyc_port):
            client, opened = rpyc_client(rpyc_port, app_threads=4, num_requests=20)
            metrics = client.execute(timeout=60)

        assert metrics.metadata['completed'] is True
        assert metrics.total_requests == 80
        assert metrics.failed_requests == 0
        assert client.completion.count == 4
        assert opened[0].allocator.outstanding == 0

    def test_error_codes_from_server(self, rpyc_port):
        with RPyCServer(host='localhost', port=rpyc_port, fail_every=2):
            client, _ = rpyc_client(rpyc_port, app_threads=1, num_requests=10)
            metrics = client.execute(timeout=60)

        assert client.workers[0].num == 10
        assert metrics.failed_requests == 5

    def test_compressed_payloads(self, rpyc_port):
        transport = TransportConfig(num_threads=1, compress_threshold=16)
        with RPyCServer(host='localhost', port=rpyc_port):
            client, _ = rpyc_client(rpyc_port, transport=transport,
                                    app_threads=2, num_requests=5, msg_size=4096)
            metrics = client.execute(timeout=60)

        assert metrics.total_requests == 10
        assert metrics.failed_requests == 0

    def test_server_redirect(self, rpyc_port, unused_port):
        """Replies from the first server move each worker to the second one"""
        second_port = unused_port
        redirect = ((('localhost', second_port, second_port),), 0)
        with RPyCServer(host='localhost', port=rpyc_port, redirect=redirect), \
                RPyCServer(host='localhost', port=second_port):
            client, _ = rpyc_client(rpyc_port, app_threads=2, num_requests=5)
            metrics = client.execute(timeout=60)

        assert metrics.failed_requests == 0
        for worker in client.workers:
            assert worker.endpoints.active.port == second_port

    def test_failover_to_second_endpoint(self, rpyc_port, unused_port):
        """An unreachable first endpoint is skipped and the switch is adopted"""
        with RPyCServer(host='localhost', port=rpyc_port):
            client, _ = rpyc_client(
                unused_port,
                num_endpoints=2,
                alt_host='localhost',
                alt_port=rpyc_port,
                app_threads=1,
                num_requests=3,
            )
            metrics = client.execute(timeout=60)

        assert metrics.failed_requests == 0
        assert client.workers[0].endpoints.in_use == 1

    def test_unreachable_server(self, unused_port):
        """Network failures still complete every request"""
        client, opened = rpyc_client(unused_port, app_threads=2, num_requests=3)
        metrics = client.execute(timeout=60)

        assert metrics.total_requests == 6
        assert metrics.failed_requests == 6
        assert opened[0].allocator.outstanding == 0


class TestDecodeRedirect:
    """Server redirect payloads"""

    def test_none(self):
        assert decode_redirect(None) is None

    def test_endpoints(self):
        hint = decode_redirect(((('10.0.0.1', 7000, 7001), ('10.0.0.2', 7100, 7101)), 1))

        assert len(hint) == 2
        assert hint.active.host == '10.0.0.2'
        assert hint.active.alt_port == 7101


class TestReplyDecoding:
    """Every reply completes its request, even one that cannot be decoded"""

    def complete(self, value):
        delivered = []
        config = TransportConfig(on_response=lambda response, redirect: delivered.append(response))
        transport = RPyCTransport.open(config)
        try:
            request = RpcMessage(None, 0, WorkerToken(0), MsgType.REQUEST)
            assert transport._acquire_session()
            transport._on_reply(request, None, SimpleNamespace(value=value))
        finally:
            transport.close()
        return transport, delivered

    def test_good_reply(self):
        transport, delivered = self.complete((0, b'abc', None))

        assert len(delivered) == 1
        assert delivered[0].code == RpcCode.SUCCESS
        assert delivered[0].length == 3
        transport.free_payload(delivered[0].payload)
        assert transport.allocator.outstanding == 0

    @pytest.mark.parametrize("value", [
        (99, b'x', None),
        (0, None, None),
        (0, b'x', ('not', 'endpoints', 'at all')),
        "garbage",
    ])
    def test_undecodable_reply_becomes_error(self, value):
        transport, delivered = self.complete(value)

        assert len(delivered) == 1
        assert delivered[0].code == RpcCode.APP_ERROR
        assert delivered[0].tag == WorkerToken(0)
        assert transport.allocator.outstanding == 0
        assert transport.in_flight == 0

    def test_remote_exception_becomes_error(self):
        class Failed:
            @property
            def value(self):
                raise RuntimeError("remote side blew up")

        delivered = []
        config = TransportConfig(on_response=lambda response, redirect: delivered.append(response))
        transport = RPyCTransport.open(config)
        try:
            request = RpcMessage(None, 0, WorkerToken(1), MsgType.REQUEST)
            assert transport._acquire_session()
            transport._on_reply(request, None, Failed())
        finally:
            transport.close()

        assert [r.code for r in delivered] == [RpcCode.APP_ERROR]
