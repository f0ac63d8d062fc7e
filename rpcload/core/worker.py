"""Per-thread worker state and the request-issue loop"""

import logging
import queue
import threading
import time
from typing import Any, Dict, Optional

from rpcload.core.completion import CompletionTracker
from rpcload.core.endpoints import EndpointSet
from rpcload.core.messages import FlowControlError, MsgType, RpcMessage, WorkerToken
from rpcload.core.metrics import MAX_LATENCY_SAMPLES, LatencyStats

log = logging.getLogger(__name__)

PROGRESS_INTERVAL = 20000


class WorkerState:
    """
    State owned by one worker thread.

    Only the owning thread touches the counters. The response callback,
    running on a transport thread, may write exactly two things: the
    endpoint set (through adopt_redirect) and the single-slot channel that
    wakes this worker.
    """

    def __init__(
        self,
        token: WorkerToken,
        endpoints: EndpointSet,
        transport,
        completion: CompletionTracker,
        num_requests: int = 0,
        msg_size: int = 128,
        progress_interval: int = PROGRESS_INTERVAL,
        stop_event: Optional[threading.Event] = None,
        latency_samples: int = MAX_LATENCY_SAMPLES,
    ):
        self.token = token
        self.endpoints = endpoints
        self.transport = transport
        self.completion = completion
        self.num_requests = num_requests
        self.msg_size = msg_size
        self.progress_interval = progress_interval
        self.stop_event = stop_event or threading.Event()

        self.num = 0
        self.responses = 0
        self.failed = 0
        self.latency = LatencyStats(latency_samples)
        self.start_time: Optional[float] = None
        self.end_time: Optional[float] = None
        self.finished = False
        self.thread: Optional[threading.Thread] = None

        self._slot: queue.Queue = queue.Queue(maxsize=1)
        self._outstanding = False
        self._outstanding_lock = threading.Lock()

    @property
    def index(self) -> int:
        return self.token.index

    def _should_continue(self) -> bool:
        if self.stop_event.is_set():
            return False
        return self.num_requests == 0 or self.num < self.num_requests

    def mark_outstanding(self):
        """Record that a request is about to go out"""
        with self._outstanding_lock:
            if self._outstanding:
                raise FlowControlError(f"{self.token} already has a request in flight")
            self._outstanding = True

    def release(self, response: RpcMessage):
        """Hand a response to the waiting worker; called from transport threads"""
        with self._outstanding_lock:
            if not self._outstanding:
                raise FlowControlError(
                    f"{self.token} got a response with no request in flight"
                )
            self._outstanding = False
        self._slot.put_nowait(response)

    def wait_response(self) -> RpcMessage:
        """Block until release() hands over the response"""
        return self._slot.get()

    def run(self):
        """Issue requests one at a time until the quota is met or stopped"""
        log.debug("thread:%d, start to send request", self.index)
        self.start_time = time.time()
        try:
            while self._should_continue():
                self.num += 1
                message = RpcMessage(
                    payload=self.transport.malloc_payload(self.msg_size),
                    length=self.msg_size,
                    tag=self.token,
                    msg_type=MsgType.REQUEST,
                )
                log.debug(
                    "thread:%d, send request, contLen:%d num:%d",
                    self.index, self.msg_size, self.num,
                )
                self.mark_outstanding()
                sent_at = time.perf_counter()
                self.transport.send_request(self.endpoints, message)
                if self.num % self.progress_interval == 0:
                    log.info("thread:%d, %d requests have been sent", self.index, self.num)

                response = self.wait_response()
                self.latency.add(time.perf_counter() - sent_at)
                self.responses += 1
                if not response.ok:
                    self.failed += 1
        finally:
            self.end_time = time.time()
            self.finished = True
            log.debug("thread:%d, it is over", self.index)
            self.completion.mark_done()

    def start(self) -> threading.Thread:
        self.thread = threading.Thread(
            target=self.run,
            name=f"rpcload-worker-{self.index}",
            daemon=True,
        )
        self.thread.start()
        return self.thread

    def get_stats(self) -> Dict[str, Any]:
        """Per-worker summary used in the report"""
        duration = None
        if self.start_time is not None and self.end_time is not None:
            duration = self.end_time - self.start_time
        return {
            'worker_id': self.index,
            'total_requests': self.num,
            'responses': self.responses,
            'failed_requests': self.failed,
            'latency': self.latency,
            'endpoint': str(self.endpoints.active),
            'total_duration': duration,
        }
