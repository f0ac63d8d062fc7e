"""RPC load client test suite

Covers:
- Endpoint sets and redirect adoption
- Completion tracking
- The per-worker request loop and one-outstanding flow control
- Response correlation through the loopback transport
- The RPyC transport against a process-isolated echo server
- Metrics, logging setup and the command line

Run tests with:
    pytest rpcload/tests/
    pytest rpcload/tests/ -v  # verbose
"""
