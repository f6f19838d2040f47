"""HTTP and media stream interface."""
from .routes import VeriCallAPI
from .server import VeriCallServer
from .stream import MediaStreamHandler

__all__ = ["MediaStreamHandler", "VeriCallAPI", "VeriCallServer"]
