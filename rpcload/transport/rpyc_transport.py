"""Transport built on RPyC asynchronous requests"""

import logging
import threading
import zlib
from concurrent.futures import ThreadPoolExecutor
from functools import partial
from typing import Dict, Optional, Tuple

import rpyc

from rpcload.core.endpoints import Endpoint, EndpointSet
from rpcload.core.messages import RpcCode, RpcMessage
from rpcload.transport.base import Transport, TransportConfig

log = logging.getLogger(__name__)

# seconds a serving thread blocks waiting for replies per round
SERVE_INTERVAL = 0.1


class _Channel:
    """One connection to an endpoint and the thread serving its replies"""

    def __init__(self, conn, endpoint: Endpoint):
        self.conn = conn
        self.endpoint = endpoint
        self.lost = False
        self.process = rpyc.async_(conn.root.process)
        self.bg_thread = rpyc.BgServingThread(
            conn,
            callback=self._on_lost,
            serve_interval=SERVE_INTERVAL,
            sleep_interval=0,
        )

    def _on_lost(self):
        self.lost = True
        log.error("connection to %s is lost", self.endpoint)

    @property
    def closed(self) -> bool:
        return self.lost or self.conn.closed

    def close(self):
        try:
            if not self.lost:
                self.bg_thread.stop()
        finally:
            self.conn.close()


def decode_redirect(redirect) -> Optional[EndpointSet]:
    """Turn a server redirect ((host, port, alt_port), ...), in_use into an EndpointSet"""
    if not redirect:
        return None
    endpoints, in_use = redirect
    return EndpointSet([Endpoint(str(h), int(p), int(a)) for h, p, a in endpoints], int(in_use))


class RPyCTransport(Transport):
    """
    Sends each request as an async RPyC call to the service's exposed
    process() method.

    One connection is opened lazily per endpoint address and shared by all
    workers. A BgServingThread per connection receives replies, which are
    handed to a pool of num_threads callback threads. When the active
    endpoint cannot be reached the next one in the set is tried and the
    switch is reported back as a redirect hint.
    """

    def __init__(self, config: TransportConfig, connect=rpyc.connect):
        super().__init__(config)
        self._connect = connect
        self._channels: Dict[Tuple[str, int], _Channel] = {}
        self._channels_lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None

    def start(self):
        self._executor = ThreadPoolExecutor(
            max_workers=self.config.num_threads,
            thread_name_prefix=f"{self.config.label}-rpyc",
        )

    def _open_channel(self, endpoint: Endpoint) -> _Channel:
        conn = self._connect(
            endpoint.host,
            endpoint.port,
            config={
                'sync_request_timeout': self.config.idle_time,
            },
        )
        try:
            conn.root.hello(self.config.user, self.config.spi, self.config.label)
        except Exception:
            conn.close()
            raise
        log.info("connection to %s is established, user:%s spi:%d",
                 endpoint, self.config.user, self.config.spi)
        return _Channel(conn, endpoint)

    def _get_channel(self, endpoint: Endpoint) -> _Channel:
        with self._channels_lock:
            channel = self._channels.get(endpoint.address)
            if channel is not None and channel.closed:
                del self._channels[endpoint.address]
                channel = None
            if channel is None:
                channel = self._open_channel(endpoint)
                self._channels[endpoint.address] = channel
            return channel

    def _drop_channel(self, endpoint: Endpoint):
        with self._channels_lock:
            channel = self._channels.pop(endpoint.address, None)
        if channel is not None:
            try:
                channel.close()
            except (OSError, EOFError) as e:
                log.debug("closing connection to %s failed: %s", endpoint, e)

    def _select_channel(self, endpoints: EndpointSet) -> Tuple[_Channel, Optional[EndpointSet]]:
        """Find a reachable endpoint starting from the active one"""
        last_error = None
        for offset in range(len(endpoints)):
            index = (endpoints.in_use + offset) % len(endpoints)
            endpoint = endpoints.endpoints[index]
            try:
                channel = self._get_channel(endpoint)
            except (OSError, EOFError) as e:
                log.error("failed to connect to %s: %s", endpoint, e)
                last_error = e
                continue
            hint = None
            if index != endpoints.in_use:
                hint = EndpointSet(list(endpoints.endpoints), index)
            return channel, hint
        raise ConnectionError(f"no endpoint reachable: {last_error}")

    def _encode(self, message: RpcMessage) -> Tuple[bytes, bool]:
        data = bytes(message.payload) if message.payload is not None else b''
        threshold = self.config.compress_threshold
        if threshold >= 0 and len(data) > threshold:
            return zlib.compress(data), True
        return data, False

    def send_request(self, endpoints: EndpointSet, message: RpcMessage):
        if not self._acquire_session():
            log.error("%s: no free session for request to %s", message.tag, endpoints.active)
            self.free_payload(message.payload)
            self._executor.submit(self._deliver, message.make_response(RpcCode.MAX_SESSIONS), None)
            return

        data, compressed = self._encode(message)
        self.free_payload(message.payload)
        message.payload = None

        try:
            channel, hint = self._select_channel(endpoints)
        except ConnectionError as e:
            log.error("%s: %s", message.tag, e)
            self._fail(message, RpcCode.NETWORK_UNAVAIL)
            return

        try:
            result = channel.process(int(message.msg_type), data, compressed)
        except (OSError, EOFError) as e:
            log.error("%s: failed to send request: %s", message.tag, e)
            self._drop_channel(endpoints.endpoints[hint.in_use if hint else endpoints.in_use])
            self._fail(message, RpcCode.NETWORK_UNAVAIL, hint)
            return
        result.add_callback(partial(self._on_reply, message, hint))

    def _fail(self, request: RpcMessage, code: RpcCode, hint: Optional[EndpointSet] = None):
        self._release_session()
        self._executor.submit(self._deliver, request.make_response(code), hint)

    def _on_reply(self, request: RpcMessage, hint: Optional[EndpointSet], result):
        # runs on the serving thread; move the work to the callback pool
        self._executor.submit(self._complete, request, hint, result)

    def _complete(self, request: RpcMessage, hint: Optional[EndpointSet], result):
        self._release_session()
        payload = None
        try:
            code, body, redirect = result.value
            payload = self.malloc_payload(len(body))
            payload[:] = body
            server_hint = decode_redirect(redirect)
            response = request.make_response(RpcCode(code), payload)
        except Exception as e:
            # remote failures and undecodable replies still complete the request
            log.error("%s: remote call failed: %s", request.tag, e)
            self.free_payload(payload)
            self._deliver(request.make_response(RpcCode.APP_ERROR), hint)
            return

        self._deliver(response, server_hint or hint)

    def _deliver(self, response: RpcMessage, redirect: Optional[EndpointSet]):
        try:
            self.config.on_response(response, redirect)
        except Exception:
            log.exception("response callback failed for %s", response.tag)
            raise

    def close(self):
        with self._channels_lock:
            channels = list(self._channels.items())
            self._channels.clear()
        for address, channel in channels:
            try:
                channel.close()
            except (OSError, EOFError) as e:
                log.debug("closing connection to %s:%d failed: %s", address[0], address[1], e)
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
