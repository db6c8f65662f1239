"""
Request-head framing for the listener.

Reads bytes off a freshly accepted socket until the blank line that
ends the HTTP request head, splits out the request line and headers,
and keeps whatever arrived after the blank line as ``head`` – for a
CONNECT these are the first tunnel bytes and must be forwarded to the
destination untouched.
"""

import socket
import time

from tcp2tls.config.settings import Settings

HEAD_TERMINATOR = b"\r\n\r\n"


class RequestError(Exception):
    """The request head cannot be accepted; answer with *status*."""

    def __init__(self, status: int, reason: str):
        super().__init__(reason)
        self.status = status
        self.reason = reason


class RequestHead:
    """Parsed request line + headers, plus the bytes that followed."""

    def __init__(self, method: str, target: str, version: str,
                 headers: list[tuple[str, str]], head: bytes = b""):
        self.method  = method
        self.target  = target
        self.version = version
        self.headers = headers
        self.head    = head

    def header(self, name: str) -> str | None:
        name = name.lower()
        for key, value in self.headers:
            if key.lower() == name:
                return value
        return None

    def __repr__(self):
        return (f"RequestHead({self.method} {self.target} {self.version}, "
                f"{len(self.headers)} headers, {len(self.head)} bytes head)")


def parse_request_head(raw: bytes) -> tuple[str, str, str,
                                             list[tuple[str, str]]]:
    """Split *raw* (without the terminator) into line parts and headers."""
    lines = raw.split(b"\r\n")
    try:
        request_line = lines[0].decode("ascii")
    except UnicodeDecodeError:
        raise RequestError(400, "Non-ASCII request line") from None

    parts = request_line.split(" ")
    if len(parts) != 3 or not all(parts):
        raise RequestError(400, f"Malformed request line {request_line!r}")
    method, target, version = parts
    if not version.startswith("HTTP/1."):
        raise RequestError(400, f"Unsupported version {version!r}")

    headers: list[tuple[str, str]] = []
    for line in lines[1:]:
        name, sep, value = line.decode("latin-1").partition(":")
        if not sep or not name or name != name.strip():
            raise RequestError(400, f"Malformed header line {line!r}")
        headers.append((name, value.strip()))
    return method, target, version, headers


def read_request(sock: socket.socket,
                 buffer_size: int = Settings.BUFFER_SIZE,
                 max_size: int = Settings.MAX_REQUEST_HEAD,
                 timeout: float | None = Settings.REQUEST_TIMEOUT,
                 ) -> RequestHead | None:
    """
    Read one request head from *sock*.

    Returns ``None`` if the peer disconnects before a complete head
    arrived.  Raises ``RequestError`` for a malformed (400), slow
    (408) or oversized (431) head.  *timeout* bounds the whole head,
    not each read.  The socket is left in blocking mode.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    buf = b""
    try:
        while True:
            # empty lines before the request line are ignored
            buf = buf.lstrip(b"\r\n")
            if HEAD_TERMINATOR in buf:
                break
            if len(buf) > max_size:
                raise RequestError(431, "Request Header Fields Too Large")
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise RequestError(408, "Request Timeout")
                sock.settimeout(remaining)
            try:
                chunk = sock.recv(buffer_size)
            except socket.timeout:
                raise RequestError(408, "Request Timeout") from None
            except OSError:
                return None
            if not chunk:
                return None
            buf += chunk
    finally:
        try:
            sock.settimeout(None)
        except OSError:
            pass

    raw, _, head = buf.partition(HEAD_TERMINATOR)
    if len(raw) > max_size:
        raise RequestError(431, "Request Header Fields Too Large")
    method, target, version, headers = parse_request_head(raw)
    return RequestHead(method, target, version, headers, head)
