"""Command line load client"""

import argparse
import logging
import sys
from pathlib import Path

from rpcload.config import ClientConfig
from rpcload.core.client import TRANSPORTS, LoadClient
from rpcload.servers.rpyc_servers import RPyCServer
from rpcload.transport.base import TransportConfig, TransportInitError
from rpcload.utils.log import DEFAULT_DEBUG_FLAG, DEFAULT_LOG_FILE, setup_logging

log = logging.getLogger(__name__)


class UsageParser(argparse.ArgumentParser):
    """Prints usage and exits cleanly on any unrecognized flag"""

    def error(self, message):
        self.print_help()
        self.exit(0)


def build_parser() -> argparse.ArgumentParser:
    client = ClientConfig()
    rpc = TransportConfig()

    parser = UsageParser(
        description="Concurrent RPC load client",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        allow_abbrev=False,
    )

    # Server configuration
    parser.add_argument('-i', dest='host', default=client.host,
                        help='first server IP address')
    parser.add_argument('-p', dest='port', type=int, default=client.port,
                        help='server port number')

    # Load shape
    parser.add_argument('-t', dest='rpc_threads', type=int, default=rpc.num_threads,
                        help='number of rpc threads')
    parser.add_argument('-s', dest='sessions', type=int, default=rpc.sessions,
                        help='number of rpc sessions')
    parser.add_argument('-m', dest='msg_size', type=int, default=client.msg_size,
                        help='message body size')
    parser.add_argument('-a', dest='app_threads', type=int, default=client.app_threads,
                        help='number of app threads')
    parser.add_argument('-n', dest='num_requests', type=int, default=client.num_requests,
                        help='number of requests per thread, 0 runs until interrupted')
    parser.add_argument('-o', dest='compress_threshold', type=int, default=rpc.compress_threshold,
                        help='compression message size, -1 disables compression')

    # Connection identity
    parser.add_argument('-u', dest='user', default=rpc.user,
                        help='user name for the connection')
    parser.add_argument('-k', dest='secret', default=rpc.secret,
                        help='password for the connection')
    parser.add_argument('-spi', dest='spi', type=int, default=rpc.spi,
                        help='security parameter index')
    parser.add_argument('-d', dest='debug_flag', type=int, default=DEFAULT_DEBUG_FLAG,
                        help='debug flag (1 error, 2 info, 4 debug, 64 screen, 128 file)')

    # Harness options
    parser.add_argument('--transport', choices=sorted(TRANSPORTS), default=client.transport_name,
                        help='transport used to reach the server')
    parser.add_argument('--spawn-server', action='store_true',
                        help='start a local RPyC echo server on the target address first')
    parser.add_argument('--log-file', default=DEFAULT_LOG_FILE,
                        help='log file written when the file bit of the debug flag is set')
    parser.add_argument('--json', dest='output',
                        help='output file for JSON results')
    parser.add_argument('--quiet', '-q', action='store_true',
                        help='suppress summary output')

    return parser


def build_config(args) -> ClientConfig:
    return ClientConfig(
        host=args.host,
        port=args.port,
        app_threads=args.app_threads,
        msg_size=args.msg_size,
        num_requests=args.num_requests,
        transport_name=args.transport,
        transport=TransportConfig(
            num_threads=args.rpc_threads,
            sessions=args.sessions,
            user=args.user,
            secret=args.secret,
            spi=args.spi,
            compress_threshold=args.compress_threshold,
        ),
    )


def main(argv=None):
    """Main entry point for the load client"""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.debug_flag, args.log_file)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    server = None
    if args.spawn_server and args.transport == 'rpyc':
        server = RPyCServer(host=args.host, port=args.port)
        server.start()

    try:
        metrics = LoadClient(config).execute()
    except TransportInitError as e:
        log.error("failed to initialize RPC: %s", e)
        print(f"failed to initialize RPC: {e}", file=sys.stderr)
        return 1
    finally:
        if server is not None:
            server.stop()

    if not args.quiet:
        metrics.print_summary()

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, 'w') as f:
            f.write(metrics.to_json())

        print(f"\nResults saved to: {output_path}")

    if metrics.metadata.get('interrupted'):
        return 130
    return 0


if __name__ == '__main__':
    sys.exit(main())
