"""
Resilient Todo

A teaching sandbox that simulates an unreliable network:
- Server with injected latency, random failures and out-of-order commits
- Confirmation stream over WebSocket
- Client with retry/backoff and a reconciliation engine offering
  Safe, Optimistic and Brave consistency modes
"""

__version__ = "0.1.0"

from resilient_todo.config import ConsistencyMode, Settings, get_settings

__all__ = ["__version__", "ConsistencyMode", "Settings", "get_settings"]
