"""
Bidirectional raw-byte relay between two connected streams.

A stream is anything with ``recv(n)``, ``sendall(data)`` and
``shutdown(how)`` – plain sockets, ``ssl.SSLSocket`` or test doubles.

Each direction is pumped by its own thread.  Blocking ``sendall``
means a slow reader on one side stalls the pump feeding it instead of
buffering in memory.  When either pump stops (EOF or error) both
streams are shut down, which wakes the other pump, so neither half of
a tunnel outlives the other.
"""

import socket
import ssl
import threading
import logging

from tcp2tls.config.settings import Settings


class Relay:
    """
    Splice *stream_a* and *stream_b* together.

    ``run()`` blocks until both directions have finished.  A relay
    instance is single use.
    """

    def __init__(self, stream_a, stream_b, name: str = "Relay",
                 buffer_size: int = Settings.BUFFER_SIZE,
                 logger: logging.Logger | None = None):
        self.stream_a    = stream_a
        self.stream_b    = stream_b
        self.name        = name
        self.buffer_size = buffer_size
        self.logger      = logger or logging.getLogger("TCP2TLS.Relay")

        self.bytes_a_to_b = 0
        self.bytes_b_to_a = 0

        self._started   = False
        self._torn_down = False
        self._lock      = threading.Lock()

    # ── lifecycle ────────────────────────────────────────────────
    def run(self):
        with self._lock:
            if self._started:
                raise RuntimeError(f"{self.name} already used")
            self._started = True

        t1 = threading.Thread(
            target=self._pump, args=(self.stream_a, self.stream_b, "a→b"),
            daemon=True, name=f"{self.name} a→b",
        )
        t2 = threading.Thread(
            target=self._pump, args=(self.stream_b, self.stream_a, "b→a"),
            daemon=True, name=f"{self.name} b→a",
        )
        t1.start()
        t2.start()
        t1.join()
        t2.join()

        self.logger.debug(
            "%s finished (%d bytes a→b, %d bytes b→a)",
            self.name, self.bytes_a_to_b, self.bytes_b_to_a,
        )

    def teardown(self):
        """Shut both streams down; safe to call any number of times."""
        with self._lock:
            if self._torn_down:
                return
            self._torn_down = True

        for stream in (self.stream_a, self.stream_b):
            try:
                _shutdown_stream(stream)
            except (OSError, ValueError):
                pass

    @property
    def is_torn_down(self) -> bool:
        return self._torn_down

    # ── one direction ────────────────────────────────────────────
    def _pump(self, src, dst, direction: str):
        try:
            while True:
                data = src.recv(self.buffer_size)
                if not data:
                    break
                dst.sendall(data)
                if src is self.stream_a:
                    self.bytes_a_to_b += len(data)
                else:
                    self.bytes_b_to_a += len(data)
        except (OSError, ValueError) as exc:
            if not self._torn_down:
                self.logger.debug("%s %s ended: %s",
                                  self.name, direction, exc)
        finally:
            self.teardown()


def _shutdown_stream(stream):
    if isinstance(stream, ssl.SSLSocket):
        # SSLSocket.shutdown detaches the TLS object; a pump still in
        # sendall must never reach the plain socket
        socket.socket.shutdown(stream, socket.SHUT_RDWR)
    else:
        stream.shutdown(socket.SHUT_RDWR)


def splice(stream_a, stream_b, **kwargs) -> None:
    """Relay *stream_a* ↔ *stream_b* until either side closes."""
    Relay(stream_a, stream_b, **kwargs).run()
