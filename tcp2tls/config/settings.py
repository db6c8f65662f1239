class Settings:
    """Centralised application configuration."""

    # ── application ──────────────────────────────────────────────
    APP_NAME    = "TCP2TLS"
    APP_VERSION = "1.0.0"

    # ── listener ─────────────────────────────────────────────────
    LISTEN_HOST    = "0.0.0.0"
    LISTEN_PORT    = 8443
    LISTEN_BACKLOG = 100

    # ── network ──────────────────────────────────────────────────
    DEFAULT_TLS_PORT = 443
    BUFFER_SIZE      = 65536

    # ── request head ─────────────────────────────────────────────
    MAX_REQUEST_HEAD = 16 * 1024     # bytes, request line + headers
    REQUEST_TIMEOUT  = 30            # seconds

    # ── outbound ─────────────────────────────────────────────────
    CONNECT_TIMEOUT = 30             # seconds, TCP connect + TLS handshake

    # ── logging ──────────────────────────────────────────────────
    LOG_LEVEL = "INFO"
