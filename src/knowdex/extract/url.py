"""URL extraction — fetch with SSRF protection, convert HTML to text.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB.
- Timeout: 30 seconds (connect + read).
- Max redirects: 3.

Fetching and conversion are separate steps so the indexing coordinator can
hash the raw body and skip conversion when a page has not changed.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
from bs4 import BeautifulSoup

from knowdex.extract.base import ContentExtractor, ExtractionError, ResourceTooLargeError

logger = logging.getLogger(__name__)

_USER_AGENT = "knowdex/0.1"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0


class SsrfError(ExtractionError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass(frozen=True)
class FetchedResource:
    url: str
    body: bytes
    content_type: str
    charset: str = "utf-8"


@dataclass(frozen=True)
class ExtractedPage:
    content: str
    title: str
    content_type: str


class UrlContentExtractor(ContentExtractor):
    """Fetch a URL and convert HTML/plain text to plain text.

    SSRF protection is applied *before* any connection is made:
    the hostname is resolved and all resulting IP addresses are checked
    against private/loopback/link-local/reserved ranges via the stdlib
    ``ipaddress`` module.
    """

    def __init__(self, max_bytes: int = _MAX_BYTES, timeout: float = _TIMEOUT) -> None:
        self.max_bytes = max_bytes
        self.timeout = timeout

    def is_text_like(self, resource: str) -> bool:
        # Converted pages have no stable line numbers.
        return False

    def extract(self, resource: str) -> str | None:
        try:
            page = self.to_text(self.fetch(resource))
        except ResourceTooLargeError:
            raise
        except ExtractionError as exc:
            logger.warning("Cannot extract %s: %s", resource, exc)
            return None
        return page.content

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    def fetch(self, url: str) -> FetchedResource:
        """Validate and fetch *url*.

        Raises:
            SsrfError: If the host resolves to a non-public address.
            ResourceTooLargeError: If the body exceeds ``max_bytes``.
            ExtractionError: On any other validation or network failure.
        """
        self._validate_scheme(url)
        self._check_ssrf(url)
        return self._fetch(url)

    @staticmethod
    def _validate_scheme(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise ExtractionError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
            )

    @staticmethod
    def _check_ssrf(url: str) -> None:
        """Resolve the hostname and block private/reserved IP ranges."""
        parsed = urllib.parse.urlparse(url)
        hostname = parsed.hostname
        if not hostname:
            raise ExtractionError(f"URL has no hostname: {url}")

        try:
            addrinfos = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise ExtractionError(f"DNS resolution failed for '{hostname}': {exc}") from exc

        for addrinfo in addrinfos:
            addr_str = addrinfo[4][0]
            try:
                ip = ipaddress.ip_address(addr_str)
            except ValueError:
                continue
            if (
                ip.is_private
                or ip.is_loopback
                or ip.is_link_local
                or ip.is_reserved
                or ip.is_multicast
                or ip.is_unspecified
            ):
                raise SsrfError(
                    f"URL resolves to private address ({ip}). "
                    "Access to internal network addresses is not allowed."
                )

    def _fetch(self, url: str) -> FetchedResource:
        """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check."""
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

        try:
            response: HTTPResponse = opener.open(request, timeout=self.timeout)
        except (urllib.error.URLError, TimeoutError, OSError) as exc:
            raise ExtractionError(f"Failed to fetch URL '{url}': {exc}") from exc

        with response:
            message = response.headers
            ct = (message.get_content_type() if message.get("Content-Type") else "text/html").lower()
            charset = message.get_content_charset() or "utf-8"
            if ct not in _ALLOWED_CONTENT_TYPES:
                raise ExtractionError(
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
                )

            body = response.read(self.max_bytes + 1)
        if len(body) > self.max_bytes:
            raise ResourceTooLargeError(url, len(body), self.max_bytes)

        return FetchedResource(url=url, body=body, content_type=ct, charset=charset)

    @staticmethod
    def to_text(fetched: FetchedResource) -> ExtractedPage:
        """Convert a fetched body to plain text based on its content type."""
        try:
            text = fetched.body.decode(fetched.charset, errors="replace")
        except LookupError:
            text = fetched.body.decode("utf-8", errors="replace")
        if fetched.content_type == "text/plain":
            return ExtractedPage(content=text, title="", content_type=fetched.content_type)

        # HTML: strip non-content tags, then html2text
        soup = BeautifulSoup(text, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""
        for tag in soup.find_all(["script", "style", "nav", "footer", "head"]):
            tag.decompose()
        return ExtractedPage(
            content=_h2t.handle(str(soup)).strip(),
            title=title,
            content_type=fetched.content_type,
        )


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Follow at most *max_redirects* redirects, re-validating every target.

    A public page may redirect to an internal address; each hop gets the same
    scheme and SSRF checks as the original URL.
    """

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise ExtractionError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        UrlContentExtractor._validate_scheme(newurl)
        UrlContentExtractor._check_ssrf(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
