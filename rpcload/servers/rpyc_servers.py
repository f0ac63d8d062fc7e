"""RPyC echo server the load client can be pointed at"""

import logging
import multiprocessing
import signal
import socket
import sys
import threading
import time
import zlib

import rpyc
from rpyc.utils.server import ForkingServer, ThreadedServer

from rpcload.core.messages import RpcCode

log = logging.getLogger(__name__)


class LoadService(rpyc.Service):
    """
    Answers process() calls with an echo of the request body.

    redirect, when set, is returned with every reply as
    ((host, port, alt_port), ...), in_use so clients move to another
    endpoint. fail_every > 0 makes every n-th reply carry APP_ERROR.
    """

    def __init__(self, redirect=None, fail_every=0):
        super().__init__()
        if redirect is not None:
            endpoints, in_use = redirect
            # tuples travel by value, lists would become netrefs
            redirect = (tuple(tuple(e) for e in endpoints), int(in_use))
        self.redirect = redirect
        self.fail_every = fail_every
        self._count = 0
        self._lock = threading.Lock()

    def exposed_hello(self, user, spi, label):
        log.debug("client %s connected, user:%s spi:%d", label, user, spi)
        return True

    def exposed_ping(self):
        return "pong"

    def exposed_process(self, msg_type, data, compressed=False):
        if compressed:
            data = zlib.decompress(data)
        with self._lock:
            self._count += 1
            count = self._count
        code = RpcCode.SUCCESS
        if self.fail_every and count % self.fail_every == 0:
            code = RpcCode.APP_ERROR
        return int(code), data, self.redirect


def _run_rpyc_server(host, port, mode, ready_event, redirect, fail_every):
    """
    Server process target function.
    Runs in a separate process to isolate from client GIL.
    """
    signal.signal(signal.SIGINT, signal.SIG_IGN)

    service = LoadService(redirect=redirect, fail_every=fail_every)
    try:
        if mode == 'threaded':
            server = ThreadedServer(service, hostname=host, port=port)
        elif mode == 'forking':
            server = ForkingServer(service, hostname=host, port=port)
        else:
            raise ValueError(f"Unknown server mode: {mode}")

        ready_event.set()
        server.start()

    except Exception as e:
        print(f"Server error: {e}", file=sys.stderr)
        ready_event.set()  # unblock parent


class RPyCServer:
    """
    Echo server running in a child process, managed by the parent.
    """

    def __init__(self, host='localhost', port=7000, mode='threaded', redirect=None, fail_every=0):
        self.host = host
        self.port = port
        self.mode = mode
        self.redirect = redirect
        self.fail_every = fail_every
        self.server_process = None
        self.ready_event = None

    def _wait_for_server(self, timeout=10):
        """Wait for server to be ready to accept connections"""
        if not self.ready_event.wait(timeout=timeout):
            raise TimeoutError(f"Server did not signal ready within {timeout}s")

        start_time = time.time()
        while time.time() - start_time < timeout:
            try:
                with socket.create_connection((self.host, self.port), timeout=1):
                    return True
            except OSError:
                time.sleep(0.1)

        raise TimeoutError(f"Server not accepting connections after {timeout}s")

    def start(self):
        self.ready_event = multiprocessing.Event()
        self.server_process = multiprocessing.Process(
            target=_run_rpyc_server,
            args=(self.host, self.port, self.mode, self.ready_event, self.redirect, self.fail_every),
            daemon=True,
        )
        self.server_process.start()
        self._wait_for_server()
        log.info("%s echo server listening on %s:%d", self.mode, self.host, self.port)

    def stop(self):
        if self.server_process and self.server_process.is_alive():
            self.server_process.terminate()
            self.server_process.join(timeout=5)

            if self.server_process.is_alive():
                self.server_process.kill()
                self.server_process.join()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False


def create_rpyc_connection(host='localhost', port=7000, timeout=5):
    """Plain synchronous connection, handy for probing a server"""
    return rpyc.connect(host, port, config={'sync_request_timeout': timeout})
