"""FX Relay: cached exchange rates over HTTP and WebSocket."""

__version__ = "0.1.0"
