#!/usr/bin/env python3
"""
Two echo servers, the first one redirecting every client to the second.

Shows workers adopting the endpoint the server hands back and sending the
rest of their requests there.
"""

from rpcload import ClientConfig, LoadClient
from rpcload.servers.rpyc_servers import RPyCServer


def main():
    leader = ('localhost', 18911, 18911)

    with RPyCServer(host='localhost', port=18910, redirect=((leader,), 0)), \
            RPyCServer(host='localhost', port=18911):
        client = LoadClient(ClientConfig(host='localhost', port=18910,
                                         app_threads=3, num_requests=100))
        metrics = client.execute(timeout=60)

    for worker in client.workers:
        print(f"  worker {worker.index}: {worker.num} requests, now on {worker.endpoints.active}")

    metrics.print_summary()


if __name__ == '__main__':
    main()
