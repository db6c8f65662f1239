"""
Minimal HTTP status-line responses written straight onto a socket.

Only what the proxy ever needs to say is supported: a status line,
an optional ``Connection: close`` line and the blank line that ends
the head.  No body, no other headers.
"""

import socket
import logging
from http import HTTPStatus

logger = logging.getLogger("TCP2TLS.Response")

CRLF = "\r\n"
HDR_CONNECTION_CLOSE = "Connection: close"


def reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Unknown"


def format_response(status_code: int, message: str | None = None,
                    close: bool = False) -> bytes:
    """
    ``HTTP/1.1 <code> <message>`` (+ ``Connection: close``) + blank line.

    *message* defaults to the standard reason phrase for *status_code*.
    """
    lines = [f"HTTP/1.1 {status_code} {message or reason_phrase(status_code)}"]
    if close:
        lines.append(HDR_CONNECTION_CLOSE)
    return (CRLF.join(lines) + CRLF + CRLF).encode("ascii")


def write_response(conn, status_code: int, message: str | None = None,
                   close: bool = False) -> bool:
    """
    Send a status-line response on *conn* and optionally close it.

    *conn* is anything with ``sendall`` (and ``shutdown``/``close``
    when *close* is set).  With ``close=True`` the connection is shut
    down once the bytes are handed to the kernel, then released.

    Transport failures are not raised: the connection is finished
    either way.  Returns ``True`` if the response was written.
    """
    written = True
    try:
        conn.sendall(format_response(status_code, message, close))
    except OSError as exc:
        logger.debug("Writing %d response failed: %s", status_code, exc)
        written = False

    if close:
        try:
            conn.shutdown(socket.SHUT_WR)
        except OSError:
            pass
        try:
            conn.close()
        except OSError:
            pass
    return written
