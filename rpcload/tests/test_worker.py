"""Tests for the per-worker request loop"""

import logging
import threading

import pytest

from rpcload.core.completion import CompletionTracker
from rpcload.core.endpoints import EndpointSet
from rpcload.core.metrics import LatencyStats
from rpcload.core.messages import FlowControlError, MsgType, RpcCode, RpcMessage, WorkerToken
from rpcload.core.worker import WorkerState
from rpcload.transport.base import PayloadAllocator


class StubTransport:
    """Answers each request from a fresh thread"""

    def __init__(self, code=RpcCode.SUCCESS):
        self.code = code
        self.allocator = PayloadAllocator()
        self.sent = []
        self.worker = None

    def malloc_payload(self, size):
        return self.allocator.malloc(size)

    def free_payload(self, buf):
        self.allocator.free(buf)

    def send_request(self, endpoints, message):
        self.sent.append((endpoints.active, message.tag, message.msg_type, message.length))
        self.free_payload(message.payload)
        response = message.make_response(self.code)
        threading.Thread(target=self.worker.release, args=(response,)).start()


def make_worker(transport, num_requests, stop_event=None, progress_interval=20000):
    worker = WorkerState(
        token=WorkerToken(0),
        endpoints=EndpointSet.single("127.0.0.1", 7000),
        transport=transport,
        completion=CompletionTracker(1),
        num_requests=num_requests,
        msg_size=64,
        progress_interval=progress_interval,
        stop_event=stop_event,
    )
    transport.worker = worker
    return worker


class TestRequestLoop:
    """Test quota handling and request contents"""

    def test_issues_exactly_quota(self):
        transport = StubTransport()
        worker = make_worker(transport, num_requests=3)

        worker.run()

        assert worker.num == 3
        assert worker.responses == 3
        assert len(transport.sent) == 3
        assert worker.completion.count == 1
        assert worker.finished

    def test_request_envelope(self):
        transport = StubTransport()
        worker = make_worker(transport, num_requests=1)

        worker.run()

        endpoint, tag, msg_type, length = transport.sent[0]
        assert endpoint.port == 7000
        assert tag == WorkerToken(0)
        assert msg_type == MsgType.REQUEST
        assert length == 64

    def test_zero_quota_stopped_before_start(self):
        """An unbounded worker that is already stopped sends nothing but still finishes"""
        stop = threading.Event()
        stop.set()
        transport = StubTransport()
        worker = make_worker(transport, num_requests=0, stop_event=stop)

        worker.run()

        assert worker.num == 0
        assert worker.completion.count == 1

    def test_error_responses_still_unblock(self):
        transport = StubTransport(code=RpcCode.APP_ERROR)
        worker = make_worker(transport, num_requests=4)

        worker.run()

        assert worker.num == 4
        assert worker.failed == 4

    def test_latency_recorded_per_request(self):
        transport = StubTransport()
        worker = make_worker(transport, num_requests=5)

        worker.run()

        assert worker.latency.count == 5
        assert worker.latency.min >= 0
        assert len(worker.latency.samples) == 5

    def test_latency_samples_capped(self):
        """Long runs keep every round trip in the aggregates but only a window of samples"""
        transport = StubTransport()
        worker = make_worker(transport, num_requests=50)
        worker.latency = LatencyStats(max_samples=10)

        worker.run()

        assert worker.latency.count == 50
        assert len(worker.latency.samples) == 10

    def test_progress_logged(self, caplog):
        transport = StubTransport()
        worker = make_worker(transport, num_requests=4, progress_interval=2)

        with caplog.at_level(logging.INFO, logger="rpcload.core.worker"):
            worker.run()

        progress = [r for r in caplog.records if "requests have been sent" in r.getMessage()]
        assert len(progress) == 2

    def test_stats(self):
        transport = StubTransport()
        worker = make_worker(transport, num_requests=2)

        worker.run()
        stats = worker.get_stats()

        assert stats['worker_id'] == 0
        assert stats['total_requests'] == 2
        assert stats['failed_requests'] == 0
        assert stats['endpoint'] == "127.0.0.1:7000"
        assert stats['total_duration'] >= 0


class TestSingleSlot:
    """Test the one-outstanding-request slot"""

    def response(self):
        return RpcMessage(payload=None, length=0, tag=WorkerToken(0), msg_type=MsgType.RESPONSE)

    def test_double_release_rejected(self):
        worker = make_worker(StubTransport(), num_requests=1)
        worker.mark_outstanding()

        worker.release(self.response())
        with pytest.raises(FlowControlError):
            worker.release(self.response())

    def test_release_after_consume_rejected(self):
        """A second response arriving after the first was taken is not paired with anything"""
        worker = make_worker(StubTransport(), num_requests=1)
        worker.mark_outstanding()

        worker.release(self.response())
        assert worker.wait_response().tag == WorkerToken(0)
        with pytest.raises(FlowControlError):
            worker.release(self.response())

    def test_release_without_request_rejected(self):
        worker = make_worker(StubTransport(), num_requests=1)

        with pytest.raises(FlowControlError):
            worker.release(self.response())

    def test_second_request_while_in_flight_rejected(self):
        worker = make_worker(StubTransport(), num_requests=1)
        worker.mark_outstanding()

        with pytest.raises(FlowControlError):
            worker.mark_outstanding()

    def test_next_request_after_response(self):
        worker = make_worker(StubTransport(), num_requests=2)

        for _ in range(2):
            worker.mark_outstanding()
            worker.release(self.response())
            worker.wait_response()
