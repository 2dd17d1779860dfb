"""streamgate - session-multiplexed JSON-RPC over HTTP + Server-Sent Events."""

__version__ = "0.1.0"
