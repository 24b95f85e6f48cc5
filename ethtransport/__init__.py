"""Asynchronous Ethereum JSON-RPC transports over HTTP, IPC and WebSocket, with batching and a recording transport for tests."""

__version__ = "0.1.7"

__all__ = ["base", "batch", "either", "testing", "http", "ipc", "ws"]