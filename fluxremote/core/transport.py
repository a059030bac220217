"""Transport configuration built once per server profile.

Produces an immutable ConnectionConfig (URL, timeout, optional SSL context,
optional basic auth header). Request workers only ever read a config
snapshot; a profile change builds a new one instead of mutating it.

Broken certificate material never aborts a connection attempt: the failing
part is logged and left out, and if nothing usable remains the platform
default SSL handling is used.
"""

import os
import re
import ssl
import base64
import logging
import tempfile
from dataclasses import dataclass
from typing import Optional, Dict
from urllib.parse import urlsplit, quote

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization

from fluxremote.core.servers import ServerProfile

logger = logging.getLogger(__name__)

_PEM_BLOCK = re.compile(
    r"-----BEGIN (?P<label>[A-Z0-9 ]+)-----\s*.+?\s*-----END (?P=label)-----",
    re.DOTALL,
)


class InvalidServerUrl(ValueError):
    pass


@dataclass(frozen=True)
class ConnectionConfig:
    url: str
    timeout: float
    ssl_context: Optional[ssl.SSLContext] = None
    auth_header: Optional[str] = None


def build_url(profile: ServerProfile) -> str:
    address = (profile.address or "").strip()
    if not address or any(c.isspace() for c in address) or "/" in address:
        raise InvalidServerUrl(f"Invalid server address: {profile.address!r}")
    if not isinstance(profile.port, int) or not 0 < profile.port < 65536:
        raise InvalidServerUrl(f"Invalid server port: {profile.port!r}")

    scheme = "https" if profile.https else "http"
    host = f"[{address}]" if ":" in address and not address.startswith("[") else address
    path = profile.api_path or "/"
    if not path.startswith("/"):
        path = "/" + path
    url = f"{scheme}://{host}:{profile.port}{quote(path, safe='/:@!$&()*+,;=-._~')}"

    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError on a malformed netloc
    except ValueError as e:
        raise InvalidServerUrl(str(e)) from e
    if not parts.hostname:
        raise InvalidServerUrl(f"Invalid server URL: {url}")
    return url


def pem_blocks(text: str) -> Dict[str, str]:
    """Map PEM label -> first block with that label."""
    blocks = {}
    for match in _PEM_BLOCK.finditer(text or ""):
        blocks.setdefault(match.group("label"), match.group(0))
    return blocks


def _private_key_block(blocks: Dict[str, str]) -> Optional[str]:
    for label, block in blocks.items():
        if label.endswith("PRIVATE KEY"):
            return block
    return None


def _load_client_certificate(context: ssl.SSLContext, pem: str) -> bool:
    blocks = pem_blocks(pem)
    cert_pem = blocks.get("CERTIFICATE")
    key_pem = _private_key_block(blocks)
    if not cert_pem or not key_pem:
        logger.error("Client certificate: PEM must contain a certificate and a private key")
        return False

    try:
        x509.load_pem_x509_certificate(cert_pem.encode())
        serialization.load_pem_private_key(key_pem.encode(), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        logger.error(f"Client certificate parsing error: {e}")
        return False

    # ssl only loads certificate chains from files
    fd, path = tempfile.mkstemp(prefix="fluxremote-", suffix=".pem")
    try:
        with os.fdopen(fd, "w", encoding="ascii") as f:
            f.write(cert_pem + "\n" + key_pem + "\n")
        context.load_cert_chain(path)
    except (ssl.SSLError, OSError) as e:
        logger.error(f"Client certificate loading error: {e}")
        return False
    finally:
        os.unlink(path)
    return True


def _load_trust_anchor(context: ssl.SSLContext, pem: str) -> bool:
    cert_pem = pem_blocks(pem).get("CERTIFICATE")
    if not cert_pem:
        logger.error("Self-signed certificate: no certificate block found")
        return False
    try:
        x509.load_pem_x509_certificate(cert_pem.encode())
        context.load_verify_locations(cadata=cert_pem)
    except (ValueError, TypeError, ssl.SSLError) as e:
        logger.error(f"Self-signed certificate parsing error: {e}")
        return False
    return True


def build_ssl_context(profile: ServerProfile) -> Optional[ssl.SSLContext]:
    """SSL context for the profile, or None to use the platform default."""
    if not (profile.client_certificate_enabled or profile.self_signed_certificate_enabled):
        return None

    # A custom trust anchor replaces the system store; self-signed server
    # certificates rarely carry a matching host name.
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    trusted = False
    if profile.self_signed_certificate_enabled:
        trusted = _load_trust_anchor(context, profile.self_signed_certificate)
    if trusted:
        context.check_hostname = False
    else:
        context = ssl.create_default_context()

    client = False
    if profile.client_certificate_enabled:
        client = _load_client_certificate(context, profile.client_certificate)

    if not (trusted or client):
        logger.warning("No usable certificates, using default SSL configuration")
        return None
    return context


def build_auth_header(profile: ServerProfile) -> Optional[str]:
    if not profile.authentication:
        return None
    credentials = f"{profile.username}:{profile.password}".encode("utf-8")
    return "Basic " + base64.b64encode(credentials).decode("ascii")


def build_connection(profile: ServerProfile) -> ConnectionConfig:
    """Raises InvalidServerUrl; certificate problems only get logged."""
    url = build_url(profile)
    ssl_context = build_ssl_context(profile) if profile.https else None
    logger.info(f"Server URL: {url} (timeout={profile.timeout}s)")
    return ConnectionConfig(
        url=url,
        timeout=float(profile.timeout),
        ssl_context=ssl_context,
        auth_header=build_auth_header(profile),
    )
