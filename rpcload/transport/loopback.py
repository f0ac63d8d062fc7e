"""In-process transport answering requests from its own thread pool"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

from rpcload.core.endpoints import Endpoint, EndpointSet
from rpcload.core.messages import RpcCode, RpcMessage, WorkerToken
from rpcload.transport.base import Transport, TransportConfig

log = logging.getLogger(__name__)

# handler(endpoint, request) -> (code, redirect hint or None)
Handler = Callable[[Endpoint, RpcMessage], Tuple[RpcCode, Optional[EndpointSet]]]


def echo_handler(endpoint: Endpoint, request: RpcMessage) -> Tuple[RpcCode, Optional[EndpointSet]]:
    return RpcCode.SUCCESS, None


class LoopbackTransport(Transport):
    """
    Transport that never leaves the process.

    Requests are answered by a handler on a pool of num_threads threads,
    so the response callback runs on threads owned by the transport just
    like a networked one. Useful for measuring the harness itself.
    """

    def __init__(
        self,
        config: TransportConfig,
        handler: Optional[Handler] = None,
        latency: float = 0.0,
        record_history: bool = False,
    ):
        super().__init__(config)
        self.handler = handler or echo_handler
        self.latency = latency
        self.record_history = record_history
        self.history: List[Tuple[WorkerToken, Endpoint]] = []
        self._history_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def start(self):
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.num_threads,
            thread_name_prefix=f"{self.config.label}-loopback",
        )
        log.info("loopback transport started with %d threads", self.config.num_threads)

    def send_request(self, endpoints: EndpointSet, message: RpcMessage):
        endpoint = endpoints.active
        if self.record_history:
            with self._history_lock:
                self.history.append((message.tag, endpoint))

        if not self._acquire_session():
            log.error("%s: no free session for request to %s", message.tag, endpoint)
            self.free_payload(message.payload)
            self._executor.submit(self._deliver, message.make_response(RpcCode.MAX_SESSIONS), None)
            return

        self._executor.submit(self._serve, endpoint, message)

    def _serve(self, endpoint: Endpoint, request: RpcMessage):
        if self.latency:
            time.sleep(self.latency)
        redirect = None
        try:
            code, redirect = self.handler(endpoint, request)
        except Exception as e:
            log.error("%s: handler failed: %s", request.tag, e)
            code = RpcCode.APP_ERROR

        payload = self.malloc_payload(request.length)
        if request.payload is not None:
            payload[:] = request.payload
        self.free_payload(request.payload)
        response = request.make_response(code, payload)
        self._release_session()
        self._deliver(response, redirect)

    def _deliver(self, response: RpcMessage, redirect: Optional[EndpointSet]):
        try:
            self.config.on_response(response, redirect)
        except Exception:
            log.exception("response callback failed for %s", response.tag)
            raise

    def requests_for(self, token: WorkerToken) -> List[Endpoint]:
        """Endpoints each request of one worker was sent to, in order"""
        with self._history_lock:
            return [endpoint for tag, endpoint in self.history if tag == token]

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
