"""
Shared pytest fixtures: in-memory stream doubles, a throwaway CA +
server certificate and a local TLS echo server.
"""

import datetime
import ipaddress
import queue
import socket
import ssl
import threading

import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Stream double
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class FakeStream:
    """
    Duplex stream backed by a queue.

    ``feed``/``eof``/``fail`` script what ``recv`` returns; everything
    passed to ``sendall`` is collected in ``sent``.  ``shutdown`` and
    ``close`` unblock a pending ``recv`` the way a real socket does.
    """

    def __init__(self, name: str = "stream", chunks=()):
        self.name           = name
        self.sent: list[bytes] = []
        self.shut           = False
        self.closed         = False
        self.shutdown_calls = 0
        self.peer           = ("203.0.113.7", 443)
        self._inbox: queue.Queue = queue.Queue()
        for chunk in chunks:
            self.feed(chunk)

    # scripting
    def feed(self, data: bytes):
        self._inbox.put(data)

    def eof(self):
        self._inbox.put(b"")

    def fail(self, exc: BaseException):
        self._inbox.put(exc)

    # socket API
    def recv(self, n: int) -> bytes:
        item = self._inbox.get(timeout=5)
        if isinstance(item, BaseException):
            raise item
        return item

    def sendall(self, data: bytes):
        if self.shut or self.closed:
            raise BrokenPipeError(f"{self.name} is shut down")
        self.sent.append(bytes(data))

    def shutdown(self, how: int):
        self.shutdown_calls += 1
        if self.closed:
            raise OSError(f"{self.name} is closed")
        self.shut = True
        self._inbox.put(b"")

    def close(self):
        self.closed = True
        self._inbox.put(b"")

    def getpeername(self):
        return self.peer

    @property
    def data(self) -> bytes:
        return b"".join(self.sent)


@pytest.fixture
def make_stream():
    return FakeStream


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  Certificates
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _name(common_name: str) -> x509.Name:
    return x509.Name([
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "TCP2TLS Tests"),
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
    ])


def _issue_test_certificates():
    now = datetime.datetime.now(datetime.timezone.utc)

    ca_key = ec.generate_private_key(ec.SECP384R1())
    ca_cert = (
        x509.CertificateBuilder()
        .subject_name(_name("TCP2TLS Test CA"))
        .issuer_name(_name("TCP2TLS Test CA"))
        .public_key(ca_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None),
                       critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False,
                key_encipherment=False, data_encipherment=False,
                key_agreement=False, key_cert_sign=True, crl_sign=True,
                encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(ca_key.public_key()),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )

    key = ec.generate_private_key(ec.SECP384R1())
    cert = (
        x509.CertificateBuilder()
        .subject_name(_name("localhost"))
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .add_extension(
            x509.SubjectAlternativeName([
                x509.DNSName("localhost"),
                x509.IPAddress(ipaddress.IPv4Address("127.0.0.1")),
            ]),
            critical=False,
        )
        .add_extension(x509.BasicConstraints(ca=False, path_length=None),
                       critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True, content_commitment=False,
                key_encipherment=False, data_encipherment=False,
                key_agreement=False, key_cert_sign=False, crl_sign=False,
                encipher_only=False, decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                       critical=False)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(
                ca_key.public_key()
            ),
            critical=False,
        )
        .sign(ca_key, hashes.SHA256())
    )
    return ca_cert, cert, key


class TLSFiles:
    """Paths of the generated PEM files plus the server certificate."""

    def __init__(self, ca_file, cert_file, key_file, cert):
        self.ca_file   = str(ca_file)
        self.cert_file = str(cert_file)
        self.key_file  = str(key_file)
        self.cert      = cert


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory) -> TLSFiles:
    ca_cert, cert, key = _issue_test_certificates()
    base = tmp_path_factory.mktemp("tls")

    ca_file, cert_file, key_file = (
        base / "ca.pem", base / "server.pem", base / "server.key"
    )
    ca_file.write_bytes(ca_cert.public_bytes(serialization.Encoding.PEM))
    cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_file.write_bytes(key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ))
    return TLSFiles(ca_file, cert_file, key_file, cert)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
#  TLS echo server
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

class TLSEchoServer:
    """
    Echoes every TLS record back.  Receiving exactly ``b"bye"`` makes
    it close the connection.  ``closed`` holds one event per accepted
    connection, set once that connection is gone.
    """

    def __init__(self, cert_file: str, key_file: str):
        self.context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        self.context.load_cert_chain(cert_file, key_file)

        self._sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._sock.bind(("127.0.0.1", 0))
        self._sock.listen(16)
        self._sock.settimeout(0.2)
        self.port = self._sock.getsockname()[1]

        self.closed: list[threading.Event] = []
        self._running = True
        self._thread = threading.Thread(target=self._accept_loop,
                                        daemon=True)
        self._thread.start()

    def _accept_loop(self):
        while self._running:
            try:
                raw, _ = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            done = threading.Event()
            self.closed.append(done)
            threading.Thread(target=self._serve, args=(raw, done),
                             daemon=True).start()

    def _serve(self, raw: socket.socket, done: threading.Event):
        conn = raw
        try:
            conn = self.context.wrap_socket(raw, server_side=True)
            while True:
                data = conn.recv(65536)
                if not data or data == b"bye":
                    break
                conn.sendall(data)
        except OSError:
            pass
        finally:
            conn.close()
            done.set()

    def stop(self):
        self._running = False
        self._sock.close()
        self._thread.join(timeout=2)


@pytest.fixture
def tls_echo_server(tls_files):
    server = TLSEchoServer(tls_files.cert_file, tls_files.key_file)
    yield server
    server.stop()
