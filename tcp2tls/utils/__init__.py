from .log import TRACE, setup_logging
from .tls import TLSConnector, create_client_context, describe_peer

__all__ = ["TRACE", "setup_logging",
           "TLSConnector", "create_client_context", "describe_peer"]
