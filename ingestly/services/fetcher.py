import ipaddress
import socket
from contextlib import asynccontextmanager
from typing import AsyncIterator, NamedTuple, Optional
from urllib.parse import urljoin, urlparse

import httpx

from ingestly.errors import InputRejected, ResponseTooLarge, TooManyRedirects

MAX_CONTENT_SIZE = 10 * 1024 * 1024  # 10 MB
MAX_IMAGE_SIZE = 10 * 1024 * 1024  # 10 MB, same as the per-file upload ceiling
TIMEOUT = 10  # seconds
MAX_REDIRECTS = 5
ALLOWED_SCHEMES = {"http", "https"}
USER_AGENT = "Mozilla/5.0 (compatible; IngestlyBot/1.0)"

_PAGE_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
_IMAGE_ACCEPT = "image/avif,image/webp,image/png,image/jpeg,image/gif,image/*;q=0.8"


class FetchResult(NamedTuple):
    url: str  # final URL after redirects
    status_code: int
    headers: httpx.Headers
    content: bytes

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").split(";")[0].strip().lower()

    @property
    def text(self) -> str:
        return self.content.decode(errors="replace")


def _is_private_address(hostname: str) -> bool:
    """Return True if *hostname* resolves to a private, loopback, or link-local address."""
    try:
        infos = socket.getaddrinfo(hostname, None)
    except socket.gaierror:
        return False

    for info in infos:
        raw_ip = info[4][0]
        # Strip IPv6 zone IDs (e.g. "::1%eth0" → "::1")
        raw_ip = raw_ip.split("%")[0]
        try:
            addr = ipaddress.ip_address(raw_ip)
        except ValueError:
            continue
        if addr.is_private or addr.is_loopback or addr.is_link_local or addr.is_reserved:
            return True
    return False


def _validate_url(url: str) -> None:
    """Raise InputRejected if *url* fails SSRF / scheme validation."""
    parsed = urlparse(url)

    if parsed.scheme not in ALLOWED_SCHEMES:
        raise InputRejected(f"Scheme '{parsed.scheme}' is not allowed. Use http or https.")

    hostname = parsed.hostname
    if not hostname:
        raise InputRejected("URL must have a valid hostname.")

    if _is_private_address(hostname):
        raise InputRejected("Requests to private/internal addresses are not allowed.")


@asynccontextmanager
async def _client_scope(
    client: Optional[httpx.AsyncClient], timeout: float
) -> AsyncIterator[httpx.AsyncClient]:
    if client is not None:
        yield client
        return
    async with httpx.AsyncClient(follow_redirects=False, timeout=timeout) as owned:
        yield owned


async def fetch(
    url: str,
    *,
    max_size: int = MAX_CONTENT_SIZE,
    timeout: float = TIMEOUT,
    max_redirects: int = MAX_REDIRECTS,
    accept: str = _PAGE_ACCEPT,
    client: Optional[httpx.AsyncClient] = None,
) -> FetchResult:
    """GET *url* and return the final URL, status, headers and body bytes.

    Redirects are followed manually so that every redirect destination is
    validated against the SSRF rules before the next request is made.

    Raises:
        InputRejected: if the URL fails SSRF / scheme validation.
        httpx.HTTPError: on network errors, timeouts and non-2xx responses.
        TooManyRedirects: after *max_redirects* hops.
        ResponseTooLarge: if the body exceeds *max_size*.
    """
    _validate_url(url)

    headers = {"User-Agent": USER_AGENT, "Accept": accept}
    current_url = url
    async with _client_scope(client, timeout) as http:
        for _ in range(max_redirects + 1):
            async with http.stream("GET", current_url, headers=headers, timeout=timeout) as response:
                if response.is_redirect:
                    location = response.headers.get("location", "")
                    next_url = urljoin(current_url, location)
                    _validate_url(next_url)
                    current_url = next_url
                    continue

                response.raise_for_status()

                content_length = response.headers.get("content-length")
                if content_length and content_length.isdigit() and int(content_length) > max_size:
                    raise ResponseTooLarge("Response body exceeds the maximum allowed size.")

                chunks = []
                total = 0
                async for chunk in response.aiter_bytes():
                    total += len(chunk)
                    if total > max_size:
                        raise ResponseTooLarge("Response body exceeds the maximum allowed size.")
                    chunks.append(chunk)

                return FetchResult(
                    url=str(response.url),
                    status_code=response.status_code,
                    headers=response.headers,
                    content=b"".join(chunks),
                )

    raise TooManyRedirects("Too many redirects.")


async def fetch_image(
    url: str, max_size: int = MAX_IMAGE_SIZE, client: Optional[httpx.AsyncClient] = None
) -> FetchResult:
    """Download an image, capped at *max_size* (the per-file ceiling by default)."""
    return await fetch(url, max_size=max_size, accept=_IMAGE_ACCEPT, client=client)
