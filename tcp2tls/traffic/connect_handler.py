"""
CONNECT request handling: validate the requested authority, apply the
default TLS port and hand the connection to a ``Tunnel``.
"""

import re
import logging
import ipaddress

from tcp2tls.config.settings      import Settings
from tcp2tls.traffic.http_request import RequestHead
from tcp2tls.traffic.tunnel       import Tunnel, TunnelRequest
from tcp2tls.utils.log             import TRACE

# control chars, whitespace and the delimiters that cannot appear in a host
_FORBIDDEN_HOST_CHARS = re.compile(r"[\x00-\x20\x7f#/:<>?@\[\\\]^|]")


class InvalidAuthority(ValueError):
    pass


def parse_authority(authority: str) -> tuple[str, int | None]:
    """
    Split a CONNECT request-target into *(host, port)*.

    Accepts ``host``, ``host:port``, ``host:``, ``[v6]`` and
    ``[v6]:port``.  *port* is ``None`` when absent or empty.
    """
    if authority.startswith("["):
        literal, sep, rest = authority[1:].partition("]")
        if not sep:
            raise InvalidAuthority(f"unterminated IPv6 literal in {authority!r}")
        try:
            ipaddress.IPv6Address(literal)
        except ValueError:
            raise InvalidAuthority(f"bad IPv6 literal {literal!r}") from None
        host = literal
        if rest and not rest.startswith(":"):
            raise InvalidAuthority(f"garbage after IPv6 literal in {authority!r}")
        port_s = rest[1:] if rest else ""
    else:
        host, sep, port_s = authority.rpartition(":")
        if not sep:
            host, port_s = authority, ""
        if not host:
            raise InvalidAuthority(f"missing host in {authority!r}")
        if _FORBIDDEN_HOST_CHARS.search(host):
            raise InvalidAuthority(f"bad host {host!r}")

    if not port_s:
        return host, None
    if not (port_s.isascii() and port_s.isdigit()):
        raise InvalidAuthority(f"bad port {port_s!r}")
    port = int(port_s)
    if port > 65535:
        raise InvalidAuthority(f"port {port} out of range")
    return host, port


class ConnectHandler:
    """
    Turns an accepted CONNECT request into a tunnel.

    Parameters
    ----------
    connector : callable
        ``connector(hostname, port)`` used for the outbound TLS side
        (normally a ``TLSConnector``).
    buffer_size : int
        Relay read size.
    default_port : int
        Port used when the request-target has none.
    logger : logging.Logger | None
        Parent logger; tunnels log to its ``Tunnel`` child.
    """

    def __init__(self, connector,
                 buffer_size: int = Settings.BUFFER_SIZE,
                 default_port: int = Settings.DEFAULT_TLS_PORT,
                 logger: logging.Logger | None = None):
        self.connector    = connector
        self.buffer_size  = buffer_size
        self.default_port = default_port
        self.logger       = logger or logging.getLogger("TCP2TLS.Proxy")

    def handle(self, client, request: RequestHead, conn_id: int) -> Tunnel:
        tunnel = Tunnel(
            conn_id, client, self.connector,
            buffer_size=self.buffer_size,
            logger=self.logger.getChild("Tunnel"),
        )
        self.logger.log(TRACE, "Connection #%d, Host %s, User-Agent %s",
                        conn_id, request.header("Host") or "-",
                        request.header("User-Agent") or "-")

        try:
            hostname, port = parse_authority(request.target)
        except InvalidAuthority as exc:
            self.logger.warning("Connection #%d, invalid url %s (%s)",
                                conn_id, request.target, exc)
            tunnel.reject(405, "Invalid URL")
            return tunnel

        # port 0 counts as absent
        port = port or self.default_port

        self.logger.info("Connection #%d, establishing tunnel to %s:%d",
                         conn_id, hostname, port)
        tunnel.build(TunnelRequest(hostname, port, request.head))
        return tunnel
