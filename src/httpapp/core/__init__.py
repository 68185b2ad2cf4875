"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

The networking plumbing underneath ``Application``:

    ┌─────────────────────────────────────────────────────────────────────┐
    │ SOCKET SERVER                                                       │
    │  • Listens on a unix socket path or a TCP host:port                 │
    │  • Accept loop on a daemon thread                                   │
    │  • One thread per connection                                        │
    │  • Graceful shutdown with a deadline                                │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │ CONNECTION                                                          │
    │  • Buffered reading (TCP is a stream, not messages)                 │
    │  • Keep-alive with a shorter idle timeout                           │
    │  • Lifecycle state that shutdown inspects from another thread      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState
from .socket_server import SocketServer, parse_tcp_address, socket_kind

__all__ = [
    "SocketServer",
    "Connection",
    "ConnectionState",
    "parse_tcp_address",
    "socket_kind",
]
