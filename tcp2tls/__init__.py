"""
TCP2TLS - TCP=>TLS tunnel with an HTTP CONNECT proxy interface.
"""

__version__ = "1.0.0"
