"""
TCP2TLS traffic layer.
"""

from .response        import write_response, format_response
from .relay           import Relay, splice
from .http_request    import RequestHead, RequestError, read_request
from .tunnel          import Tunnel, TunnelRequest, TunnelState, TunnelStateError
from .connect_handler import ConnectHandler, InvalidAuthority, parse_authority
from .proxy_server    import ProxyServer

__all__ = [
    "write_response",
    "format_response",
    "Relay",
    "splice",
    "RequestHead",
    "RequestError",
    "read_request",
    "Tunnel",
    "TunnelRequest",
    "TunnelState",
    "TunnelStateError",
    "ConnectHandler",
    "InvalidAuthority",
    "parse_authority",
    "ProxyServer",
]
