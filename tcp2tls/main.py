"""
TCP2TLS - command-line entry point.

    tcp2tls [-p PORT] [-b HOST] [-t SECONDS] [-k] [--cafile PATH] [-v]

Unknown parameters are logged and ignored; the rest of the command
line still applies.
"""

import sys
import logging
import argparse

from tcp2tls.config.settings      import Settings
from tcp2tls.traffic.proxy_server import ProxyServer
from tcp2tls.utils.log            import TRACE, setup_logging
from tcp2tls.utils.tls            import create_client_context

logger = logging.getLogger("TCP2TLS.Main")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcp2tls",
        description="TCP=>TLS proxy using HTTP CONNECT method",
        add_help=False,
    )
    parser.add_argument(
        "-?", "-h", dest="help", action="store_true",
        help="print this info",
    )
    parser.add_argument(
        "-p", dest="port", type=int, default=Settings.LISTEN_PORT,
        metavar="port",
        help=f"port to listen (default: {Settings.LISTEN_PORT})",
    )
    parser.add_argument(
        "-b", dest="host", default=Settings.LISTEN_HOST, metavar="host",
        help=f"address to bind (default: {Settings.LISTEN_HOST})",
    )
    parser.add_argument(
        "-t", dest="connect_timeout", type=float,
        default=Settings.CONNECT_TIMEOUT, metavar="seconds",
        help=("outbound connect + TLS handshake timeout "
              f"(default: {Settings.CONNECT_TIMEOUT})"),
    )
    parser.add_argument(
        "-k", dest="insecure", action="store_true",
        help="do not verify destination certificates",
    )
    parser.add_argument(
        "--cafile", default=None, metavar="path",
        help="extra CA bundle to trust for destinations",
    )
    parser.add_argument(
        "-v", dest="verbose", action="store_true",
        help="trace-level logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args, unknown = parser.parse_known_args(argv)

    if args.help:
        parser.print_help()
        return 0

    setup_logging(TRACE if args.verbose else Settings.LOG_LEVEL)
    for param in unknown:
        logger.warning("Unknown parameter %s", param)

    server = ProxyServer(
        host=args.host,
        port=args.port,
        connect_timeout=args.connect_timeout,
        ssl_context=create_client_context(
            verify=not args.insecure, cafile=args.cafile
        ),
        logger=logging.getLogger("TCP2TLS.Proxy"),
    )

    logger.info("%s v%s started", Settings.APP_NAME, Settings.APP_VERSION)
    try:
        server.start()
    except OSError as exc:
        logger.error("Cannot listen on %s:%d: %s", args.host, args.port, exc)
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down…")
    finally:
        server.stop()
    return 0


if __name__ == "__main__":
    sys.exit(main())
