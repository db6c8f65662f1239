"""
CONNECT tunnel lifecycle.

A ``Tunnel`` pairs one accepted client connection with at most one
outbound TLS connection and walks an explicit state machine:

    received-request ──► rejected
           │
           ▼
    tunnel-requested ──► handshake-pending ──► relaying ──► closed
                                 │                            ▲
                                 └────────────────────────────┘

Only the transitions drawn above are legal; anything else raises
``TunnelStateError``.  ``build()`` is the happy path: connect, reply
``200 Connection Established``, forward the pre-read head, relay.
"""

import socket
import logging

from tcp2tls.config.settings  import Settings
from tcp2tls.traffic.relay    import Relay
from tcp2tls.traffic.response import write_response
from tcp2tls.utils.log        import TRACE
from tcp2tls.utils.tls        import describe_peer


class TunnelState:
    RECEIVED_REQUEST  = "received-request"
    REJECTED          = "rejected"
    TUNNEL_REQUESTED  = "tunnel-requested"
    HANDSHAKE_PENDING = "handshake-pending"
    RELAYING          = "relaying"
    CLOSED            = "closed"

    TRANSITIONS = {
        RECEIVED_REQUEST:  {REJECTED, TUNNEL_REQUESTED},
        REJECTED:          set(),
        TUNNEL_REQUESTED:  {HANDSHAKE_PENDING},
        HANDSHAKE_PENDING: {RELAYING, CLOSED},
        RELAYING:          {CLOSED},
        CLOSED:            set(),
    }


class TunnelStateError(RuntimeError):
    pass


class TunnelRequest:
    """Destination of one CONNECT plus the bytes that came with it."""

    def __init__(self, hostname: str, port: int, head: bytes = b""):
        if not hostname:
            raise ValueError("hostname must not be empty")
        self.hostname = hostname
        self.port     = port
        self.head     = head or b""

    def __repr__(self):
        return (f"TunnelRequest({self.hostname}:{self.port}, "
                f"{len(self.head)} bytes head)")


def status_for_exception(exc: BaseException) -> int:
    """HTTP status reported to the client for a failed outbound connect."""
    if isinstance(exc, socket.timeout):
        return 504
    return 502


class Tunnel:
    """
    One client connection and its destination-facing counterpart.

    Parameters
    ----------
    conn_id : int
        Connection identifier assigned by the listener; used to tag
        every log line of this tunnel.
    client : socket-like
        Accepted client connection (``recv``/``sendall``/``shutdown``/
        ``close``).
    connector : callable
        ``connector(hostname, port) -> stream`` that returns a connected
        TLS stream or raises ``OSError`` (``UnicodeError`` for a
        hostname that cannot be IDNA-encoded).
    """

    def __init__(self, conn_id: int, client, connector,
                 buffer_size: int = Settings.BUFFER_SIZE,
                 logger: logging.Logger | None = None):
        self.conn_id     = conn_id
        self.client      = client
        self.connector   = connector
        self.buffer_size = buffer_size
        self.logger      = logger or logging.getLogger("TCP2TLS.Tunnel")

        self.state         = TunnelState.RECEIVED_REQUEST
        self.request: TunnelRequest | None = None
        self.outbound      = None
        self.relay: Relay | None = None
        self.response_sent = False

    # ── state machine ────────────────────────────────────────────
    def advance(self, new_state: str):
        if new_state not in TunnelState.TRANSITIONS[self.state]:
            raise TunnelStateError(
                f"Tunnel #{self.conn_id}: {self.state} -> {new_state} "
                f"not allowed"
            )
        self.logger.log(TRACE, "Tunnel #%d %s -> %s",
                        self.conn_id, self.state, new_state)
        self.state = new_state

    def reject(self, status_code: int, message: str | None = None):
        """Refuse the request before any outbound attempt."""
        self.advance(TunnelState.REJECTED)
        self.response_sent = write_response(
            self.client, status_code, message, close=True
        )

    # ── build ────────────────────────────────────────────────────
    def build(self, request: TunnelRequest):
        """
        Open the outbound TLS connection for *request* and, once the
        handshake succeeds, relay until either side closes.  Blocks
        for the whole life of the tunnel.
        """
        self.request = request
        self.advance(TunnelState.TUNNEL_REQUESTED)
        self.logger.log(TRACE, "Tunnel #%d, connecting to %s:%d",
                        self.conn_id, request.hostname, request.port)
        self.advance(TunnelState.HANDSHAKE_PENDING)

        try:
            self.outbound = self.connector(request.hostname, request.port)
        except (OSError, UnicodeError) as exc:
            # UnicodeError: hostname the idna codec cannot encode
            self._on_connect_failed(exc)
            return

        self._on_connect()

    def _on_connect(self):
        self.logger.info("Tunnel #%d connected to dest %s",
                         self.conn_id, describe_peer(self.outbound))

        if not write_response(self.client, 200, "Connection Established"):
            self.logger.warning(
                "Tunnel #%d client went away before 200", self.conn_id
            )
            self.close()
            return
        self.response_sent = True

        if self.request.head:
            try:
                self.outbound.sendall(self.request.head)
            except OSError as exc:
                self.logger.warning("Tunnel #%d error: %s",
                                    self.conn_id, exc)
                self.close()
                return

        self.advance(TunnelState.RELAYING)
        self.relay = Relay(
            self.client, self.outbound,
            name=f"Tunnel #{self.conn_id}",
            buffer_size=self.buffer_size,
            logger=self.logger,
        )
        self.logger.info("Tunnel #%d ready", self.conn_id)
        self.relay.run()
        self.close()

    def _on_connect_failed(self, exc: Exception):
        self.logger.warning("Tunnel #%d error: %s", self.conn_id, exc)
        if not self.response_sent:
            write_response(self.client, status_for_exception(exc),
                           close=True)
        self.close()

    # ── teardown ─────────────────────────────────────────────────
    def close(self):
        """Release both sockets; idempotent."""
        if self.state == TunnelState.CLOSED:
            return
        for sock in (self.outbound, self.client):
            if sock is None:
                continue
            try:
                sock.close()
            except OSError:
                pass
        self.advance(TunnelState.CLOSED)
        self.logger.info("Tunnel #%d closed", self.conn_id)
