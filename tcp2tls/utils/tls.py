"""
Client-side TLS for outbound tunnel connections.

* ``create_client_context`` – verifying ``ssl.SSLContext`` (system
  trust store, optional extra CA file, optional no-verify mode).
* ``TLSConnector``          – callable that opens TCP, performs the TLS
  handshake with SNI and returns the connected ``ssl.SSLSocket``.
* ``describe_peer``         – one-line summary of the destination
  (address, certificate CN and SHA-256 fingerprint) for the logs.
"""

import socket
import ssl

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes

from tcp2tls.config.settings import Settings


def create_client_context(verify: bool = True,
                          cafile: str | None = None) -> ssl.SSLContext:
    """Return a client context; *verify=False* skips all cert checks."""
    context = ssl.create_default_context(cafile=cafile)
    if not verify:
        context.check_hostname = False
        context.verify_mode    = ssl.CERT_NONE
    return context


class TLSConnector:
    """
    Opens the destination-facing side of a tunnel.

    ``timeout`` bounds both the TCP connect and the TLS handshake;
    the returned socket is switched back to blocking mode.
    """

    def __init__(self, ssl_context: ssl.SSLContext | None = None,
                 timeout: float | None = Settings.CONNECT_TIMEOUT):
        self.ssl_context = ssl_context or create_client_context()
        self.timeout     = timeout

    def __call__(self, hostname: str, port: int) -> ssl.SSLSocket:
        raw_sock = socket.create_connection(
            (hostname, port), timeout=self.timeout
        )
        try:
            tls_sock = self.ssl_context.wrap_socket(
                raw_sock, server_hostname=hostname
            )
        except BaseException:
            raw_sock.close()
            raise
        tls_sock.settimeout(None)
        return tls_sock


def describe_certificate(der: bytes | None) -> str:
    if not der:
        return "no certificate"
    try:
        cert = x509.load_der_x509_certificate(der)
    except ValueError:
        return "unparsable certificate"

    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    subject = (common_names[0].value if common_names
               else cert.subject.rfc4514_string())
    fingerprint = cert.fingerprint(hashes.SHA256()).hex(":")
    return f"{subject} (sha256 {fingerprint})"


def describe_peer(sock) -> str:
    """``"<ip>:<port>, <certificate>"`` for a connected TLS socket."""
    try:
        address = "%s:%d" % sock.getpeername()[:2]
    except OSError:
        address = "unknown address"

    der = None
    getpeercert = getattr(sock, "getpeercert", None)
    if getpeercert is not None:
        try:
            der = getpeercert(binary_form=True)
        except (OSError, ValueError):
            der = None
    return f"{address}, {describe_certificate(der)}"
