"""
Network utilities for gohttp.

TLS context construction for the pooled HTTP/1.1 agents and the
HTTP/2 session.
"""

import ssl
from typing import List, Optional


def create_ssl_context(
    verify: bool = True,
    cert_file: Optional[str] = None,
    key_file: Optional[str] = None,
    alpn_protocols: Optional[List[str]] = None,
) -> ssl.SSLContext:
    """
    Create an SSL context for client connections.

    Args:
        verify: Verify the server certificate and hostname
        cert_file: Path to client certificate file (mutual TLS)
        key_file: Path to client private key file (mutual TLS)
        alpn_protocols: Optional list of ALPN protocols to negotiate

    Returns:
        Configured SSL context

    Raises:
        ssl.SSLError: If the certificate chain cannot be loaded
    """
    context = ssl.create_default_context()

    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if alpn_protocols:
        context.set_alpn_protocols(alpn_protocols)

    context.options |= ssl.OP_NO_COMPRESSION
    context.minimum_version = ssl.TLSVersion.TLSv1_2

    if cert_file and key_file:
        context.load_cert_chain(cert_file, key_file)

    return context
