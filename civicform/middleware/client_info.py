"""
Caller identification shared by the rate limiter, access log, error log and
submission metadata.

Behind Cloudflare or a reverse proxy the socket peer is the proxy. With
TRUST_PROXY_HEADERS enabled the address is taken from CF-Connecting-IP, then
from the first hop of X-Forwarded-For. Never enable it on a directly exposed
server: clients could pick their own rate-limit key.
"""

from typing import Optional

from starlette.requests import HTTPConnection

from civicform.config import settings


def get_client_ip(request: HTTPConnection) -> str:
    if settings.trust_proxy_headers:
        cf_ip = request.headers.get("CF-Connecting-IP")
        if cf_ip:
            return cf_ip.strip()
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
    # request.client may be None in testing
    return getattr(request.client, "host", "unknown") if request.client else "unknown"


def get_user_agent(request: HTTPConnection) -> Optional[str]:
    return request.headers.get("User-Agent")


def get_endpoint(request: HTTPConnection) -> str:
    """Path plus query string, as the caller sent it."""
    if request.url.query:
        return f"{request.url.path}?{request.url.query}"
    return request.url.path
