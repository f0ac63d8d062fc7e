"""Load client: worker table, response correlation and run lifecycle"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from rpcload.config import ClientConfig
from rpcload.core.completion import CompletionTracker
from rpcload.core.endpoints import EndpointSet
from rpcload.core.messages import FlowControlError, RpcMessage, WorkerToken
from rpcload.core.metrics import LoadMetrics
from rpcload.core.worker import WorkerState
from rpcload.transport.base import Transport, TransportConfig
from rpcload.transport.loopback import LoopbackTransport
from rpcload.transport.rpyc_transport import RPyCTransport

log = logging.getLogger(__name__)

TransportFactory = Callable[[TransportConfig], Transport]

TRANSPORTS: Dict[str, TransportFactory] = {
    'rpyc': RPyCTransport.open,
    'loopback': LoopbackTransport.open,
}


class LoadClient:
    """
    Drives app_threads workers against one shared transport.

    Each worker keeps exactly one request in flight. process_response() is
    the single callback the transport invokes for every completed request;
    it finds the worker by its token, applies any redirect to that worker's
    endpoint set, frees the response payload and wakes the worker.
    """

    def __init__(
        self,
        config: ClientConfig,
        transport_factory: Optional[TransportFactory] = None,
        measure_system: bool = True,
        name: str = "rpc load",
    ):
        self.config = config
        self.transport_factory = transport_factory or TRANSPORTS[config.transport_name]
        self.measure_system = measure_system
        self.transport: Optional[Transport] = None
        self.workers: List[WorkerState] = []
        self.completion = CompletionTracker(config.app_threads)
        self._stop_event = threading.Event()
        self.metrics = LoadMetrics(
            name=name,
            transport=config.transport_name,
            app_threads=config.app_threads,
            msg_size=config.msg_size,
            num_requests=config.num_requests,
        )

    def setup(self):
        """Open the transport and build the worker table"""
        self.config.transport.on_response = self.process_response
        self.transport = self.transport_factory(self.config.transport)
        log.info("client is initialized")
        log.info("threads:%d msgSize:%d requests:%d",
                 self.config.app_threads, self.config.msg_size, self.config.num_requests)

        self.workers = [
            WorkerState(
                token=WorkerToken(index),
                endpoints=self.config.endpoint_set(),
                transport=self.transport,
                completion=self.completion,
                num_requests=self.config.num_requests,
                msg_size=self.config.msg_size,
                progress_interval=self.config.progress_interval,
                stop_event=self._stop_event,
            )
            for index in range(self.config.app_threads)
        ]

    def worker_for(self, token: Optional[WorkerToken]) -> WorkerState:
        """Worker a correlation token names"""
        if token is None or not 0 <= token.index < len(self.workers):
            raise FlowControlError(f"response carries unknown correlation tag {token!r}")
        return self.workers[token.index]

    def process_response(self, response: RpcMessage, redirect: Optional[EndpointSet] = None):
        """Response callback, runs on transport threads"""
        try:
            worker = self.worker_for(response.tag)
        except FlowControlError as e:
            log.error("%s", e)
            raise

        log.debug("thread:%d, response is received, type:%d contLen:%d code:0x%x",
                  worker.index, response.msg_type, response.length, response.code)
        if not response.ok:
            log.error("thread:%d, response code:0x%x (%s)",
                      worker.index, response.code, response.code.name)

        if redirect is not None:
            worker.endpoints.adopt_redirect(redirect)
            log.debug("thread:%d, endpoint changed to %s", worker.index, worker.endpoints.active)

        self.transport.free_payload(response.payload)
        response.payload = None
        worker.release(response)

    def start(self):
        """Spawn one thread per worker"""
        for worker in self.workers:
            worker.start()

    def stop(self):
        """Ask every worker to leave its loop after its outstanding response"""
        self._stop_event.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.completion.wait(timeout=timeout, poll_interval=self.config.poll_interval)

    def run(self, timeout: Optional[float] = None) -> bool:
        """Run workers until all of them are done, returns whether they were"""
        self.start()
        completed = self.wait(timeout)
        if completed:
            for worker in self.workers:
                worker.thread.join()
        return completed

    def join(self, timeout: Optional[float] = None) -> bool:
        """Join stopped worker threads within one shared deadline, returns whether all exited"""
        deadline = None if timeout is None else time.monotonic() + timeout
        for worker in self.workers:
            if worker.thread is None:
                continue
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            worker.thread.join(remaining)
        stuck = [w.index for w in self.workers if w.thread is not None and w.thread.is_alive()]
        if stuck:
            log.error("workers %s still running after %.1fs", stuck, timeout)
        return not stuck

    def collect(self) -> LoadMetrics:
        """Fold the worker counters into the metrics"""
        for worker in self.workers:
            self.metrics.add_worker(worker.get_stats())
        return self.metrics

    def teardown(self):
        if self.transport is not None:
            self.transport.close()
            self.transport = None

    def execute(self, timeout: Optional[float] = None) -> LoadMetrics:
        """Execute full run lifecycle"""
        completed = False
        try:
            self.setup()
            if self.measure_system:
                self.metrics.record_system_metrics()
            self.metrics.start()
            try:
                completed = self.run(timeout)
            except KeyboardInterrupt:
                log.info("run interrupted, stopping workers")
                self.metrics.metadata['interrupted'] = True
                self.stop()
                completed = self.wait(self.config.transport.idle_time)
            self.metrics.end()
            if self.measure_system:
                self.metrics.record_system_metrics()
            self.metrics.metadata['completed'] = completed
        finally:
            # workers must be out of send_request before the transport closes
            if not completed:
                self.stop()
                self.join(self.config.transport.idle_time)
            self.teardown()

        self.collect()
        self.metrics.log_report()
        return self.metrics
