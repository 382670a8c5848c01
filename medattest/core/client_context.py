"""
Client context capture for attestation audit fields.

The IP address and user agent recorded on an attestation are audit hints
only. Both are trivially spoofable and are never used for access decisions.
"""
import logging
from typing import Optional

import httpx
from fastapi import Request
from pydantic import BaseModel

from ..config import settings

# Set up logging
logger = logging.getLogger(__name__)

LOOPBACK_ADDRESS = "127.0.0.1"
UNKNOWN_USER_AGENT = "unknown"
_LOCAL_HOSTS = {LOOPBACK_ADDRESS, "::1", "localhost", "testclient"}

class ClientContext(BaseModel):
    """Client-side details captured into an attestation record."""
    ip_address: str = LOOPBACK_ADDRESS
    user_agent: str = UNKNOWN_USER_AGENT

async def lookup_public_ip(
    url: str,
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> str:
    """
    Ask an IP echo service for the caller's public address.

    Args:
        url: Echo service URL returning ``{"ip": "..."}``
        timeout: Request timeout in seconds
        transport: Optional httpx transport (used by tests)

    Returns:
        str: The public address, or the loopback address on any failure
    """
    try:
        async with httpx.AsyncClient(
            timeout=timeout or settings.request_timeout_seconds,
            transport=transport
        ) as client:
            response = await client.get(url, params={"format": "json"})
            response.raise_for_status()
            ip_address = response.json().get("ip")
    except (httpx.HTTPError, ValueError) as e:
        logger.warning(f"Public IP lookup failed, falling back to loopback: {str(e)}")
        return LOOPBACK_ADDRESS

    return ip_address or LOOPBACK_ADDRESS

async def capture_client_context(
    request: Optional[Request] = None,
    lookup_url: Optional[str] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> ClientContext:
    """
    Build the client context for the current request.

    The forwarded-for header wins over the socket peer. When only a local
    address is known and a lookup URL is configured, the public address is
    fetched from the echo service instead.

    Args:
        request: Incoming request, if any
        lookup_url: IP echo service (default: ``settings.public_ip_lookup_url``)
        transport: Optional httpx transport (used by tests)

    Returns:
        ClientContext: Captured IP address and user agent
    """
    ip_address = None
    user_agent = None

    if request is not None:
        user_agent = request.headers.get("user-agent")
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            ip_address = forwarded.split(",")[0].strip()
        elif request.client:
            ip_address = request.client.host

    lookup_url = lookup_url or settings.public_ip_lookup_url
    if (not ip_address or ip_address in _LOCAL_HOSTS) and lookup_url:
        ip_address = await lookup_public_ip(lookup_url, transport=transport)

    return ClientContext(
        ip_address=ip_address or LOOPBACK_ADDRESS,
        user_agent=user_agent or UNKNOWN_USER_AGENT
    )
