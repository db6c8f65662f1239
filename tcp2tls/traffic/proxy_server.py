"""
TCP2TLS listener: plaintext HTTP CONNECT in, TLS out.

    Client ──TCP──► ProxyServer ──CONNECT──► Tunnel ──TLS──► host:port

Every accepted connection gets a sequential connection ID and its own
daemon thread.  The thread reads the request head, answers anything
that is not CONNECT with ``405`` and passes CONNECT requests to the
``ConnectHandler``, which owns the socket from then on.

Browser / client setup:
  - Set the HTTPS proxy to <host>:8443
  - ``curl -p -x http://127.0.0.1:8443 ...`` for a raw tunnel
"""

import socket
import threading
import itertools
import logging
import ssl

from tcp2tls.config.settings         import Settings
from tcp2tls.traffic.connect_handler import ConnectHandler
from tcp2tls.traffic.http_request    import RequestError, read_request
from tcp2tls.traffic.response        import write_response
from tcp2tls.utils.log               import TRACE
from tcp2tls.utils.tls               import TLSConnector


class ProxyServer:
    """
    HTTP CONNECT proxy that dials every destination over TLS.

    Parameters
    ----------
    host / port : str / int
        Listen address.  ``port=0`` binds an ephemeral port; the real
        one is available as ``self.port`` after ``start()``.
    connect_timeout : float | None
        Bound for outbound TCP connect + TLS handshake.
    ssl_context : ssl.SSLContext | None
        Client context for outbound connections (system trust store
        when *None*).
    connector : callable | None
        Replaces the default ``TLSConnector`` entirely; handy for tests.
    buffer_size : int
        Socket read size for request heads and relays.
    request_timeout : float | None
        How long a client may take to send its request head.
    logger : logging.Logger | None
        Logger for the listener; handler and tunnels use children of it.
    """

    def __init__(
        self,
        host: str = Settings.LISTEN_HOST,
        port: int = Settings.LISTEN_PORT,
        connect_timeout: float | None = Settings.CONNECT_TIMEOUT,
        ssl_context: ssl.SSLContext | None = None,
        connector=None,
        buffer_size: int = Settings.BUFFER_SIZE,
        request_timeout: float | None = Settings.REQUEST_TIMEOUT,
        logger: logging.Logger | None = None,
    ):
        self.host            = host
        self.port            = port
        self.buffer_size     = buffer_size
        self.request_timeout = request_timeout
        self.logger          = logger or logging.getLogger("TCP2TLS.Proxy")

        self.connector = connector or TLSConnector(
            ssl_context, timeout=connect_timeout
        )
        self.handler = ConnectHandler(
            self.connector,
            buffer_size=buffer_size,
            logger=self.logger,
        )

        self._server_sock: socket.socket | None = None
        self._running       = False
        self._stopped       = threading.Event()
        self._accept_thread: threading.Thread | None = None
        self._lock          = threading.Lock()
        self._conn_ids      = itertools.count(1)

    # ── lifecycle ────────────────────────────────────────────────
    def start(self):
        """Bind, listen and start accepting connections."""
        if self._running:
            self.logger.warning("Proxy already running")
            return

        server_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            server_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            server_sock.settimeout(1.0)          # so we can check _running
            server_sock.bind((self.host, self.port))
            server_sock.listen(Settings.LISTEN_BACKLOG)
        except OSError:
            server_sock.close()
            raise
        self._server_sock = server_sock
        self.port = server_sock.getsockname()[1]

        self._running = True
        self._stopped.clear()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, daemon=True,
            name="ProxyAccept",
        )
        self._accept_thread.start()
        self.logger.info("Listening to %s:%d", self.host, self.port)

    def stop(self):
        """Stop accepting; tunnels already running finish on their own."""
        self._running = False
        if self._server_sock:
            try:
                self._server_sock.close()
            except OSError:
                pass
            self._server_sock = None
        if self._accept_thread and self._accept_thread.is_alive():
            self._accept_thread.join(timeout=5)
        self._stopped.set()
        self.logger.info("Proxy stopped")

    def serve_forever(self):
        """Block the calling thread until ``stop()``."""
        self._stopped.wait()

    @property
    def is_running(self) -> bool:
        return self._running

    def _next_conn_id(self) -> int:
        with self._lock:
            return next(self._conn_ids)

    # ── accept loop ──────────────────────────────────────────────
    def _accept_loop(self):
        while self._running:
            try:
                client_sock, addr = self._server_sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._running:
                    self.logger.error("Proxy accept error", exc_info=True)
                break

            conn_id = self._next_conn_id()
            self.logger.info("Connection #%d accepted on port %d from %s:%d",
                             conn_id, self.port, *addr[:2])
            threading.Thread(
                target=self._handle_client,
                args=(client_sock, conn_id),
                daemon=True,
                name=f"Proxy-#{conn_id}",
            ).start()

    # ── per-client handler ───────────────────────────────────────
    def _handle_client(self, client_sock: socket.socket, conn_id: int):
        try:
            try:
                request = read_request(
                    client_sock,
                    buffer_size=self.buffer_size,
                    timeout=self.request_timeout,
                )
            except RequestError as exc:
                self.logger.warning("Connection #%d, bad request: %s",
                                    conn_id, exc.reason)
                write_response(client_sock, exc.status, close=True)
                return

            if request is None:
                self.logger.log(TRACE, "Connection #%d, no request",
                                conn_id)
                return

            if request.method != "CONNECT":
                self.logger.warning("Connection #%d, wrong request %s",
                                    conn_id, request.method)
                write_response(client_sock, 405, close=True)
                return

            self.handler.handle(client_sock, request, conn_id)

        except Exception:
            self.logger.error("Connection #%d handler error", conn_id,
                              exc_info=True)
        finally:
            try:
                client_sock.close()
            except OSError:
                pass
            self.logger.log(TRACE, "Connection #%d closed", conn_id)
