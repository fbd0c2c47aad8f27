"""Source fetcher: URL fetch with SSRF protection, article extraction, Markdown.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established (``allow_private`` opts out for intranet use).
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB (configurable).
- Max redirects: 3.
"""

from __future__ import annotations

import hashlib
import ipaddress
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
import trafilatura
from bs4 import BeautifulSoup

from onyx.errors import ExtractionError, FetchError

DEFAULT_USER_AGENT = "Onyx-Bot/0.1 (onyx)"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30.0  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}


class SsrfError(ValueError):
    """Raised when a URL resolves to a private or reserved address."""


@dataclass(frozen=True)
class FetchedPage:
    body: str
    content_type: str
    etag: str | None
    final_url: str


@dataclass(frozen=True)
class Article:
    title: str | None
    html: str


# ------------------------------------------------------------------
# Fetch
# ------------------------------------------------------------------


def fetch(
    url: str,
    user_agent: str = DEFAULT_USER_AGENT,
    timeout: float = _TIMEOUT,
    max_bytes: int = _MAX_BYTES,
    allow_private: bool = False,
) -> FetchedPage:
    """Fetch *url* and return the decoded body plus response metadata.

    Raises:
        ValueError: unsupported scheme, content type, or oversized body.
        SsrfError: the host resolves to a private/reserved address.
        FetchError: network failure, non-2xx status, or too many redirects.
    """
    validate_scheme(url)
    if not allow_private:
        check_ssrf(url)

    request = urllib.request.Request(url, headers={"User-Agent": user_agent})
    opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS))

    try:
        response: HTTPResponse = opener.open(request, timeout=timeout)
    except urllib.error.HTTPError as exc:
        raise FetchError(url, f"HTTP {exc.code} {exc.reason}", status_code=exc.code) from exc
    except urllib.error.URLError as exc:
        raise FetchError(url, str(exc.reason)) from exc
    except (TimeoutError, OSError) as exc:
        raise FetchError(url, str(exc)) from exc

    with response:
        status = getattr(response, "status", 200)
        if not 200 <= status < 300:
            raise FetchError(url, f"HTTP {status}", status_code=status)

        raw_ct = response.headers.get("Content-Type", "text/html")
        ct = raw_ct.split(";")[0].strip().lower()
        if ct not in _ALLOWED_CONTENT_TYPES:
            raise ValueError(
                f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
            )

        body = response.read(max_bytes + 1)
        if len(body) > max_bytes:
            raise ValueError(
                f"Response body exceeds {max_bytes // (1024 * 1024)} MB limit for URL '{url}'."
            )

        charset = response.headers.get_content_charset() or "utf-8"
        try:
            text = body.decode(charset, errors="replace")
        except LookupError:
            # unknown codec name in the Content-Type header
            text = body.decode("utf-8", errors="replace")
        return FetchedPage(
            body=text,
            content_type=ct,
            etag=response.headers.get("ETag"),
            final_url=response.geturl(),
        )


def validate_scheme(url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ValueError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )


def check_ssrf(url: str) -> None:
    """Resolve the hostname and block private/reserved IP ranges.

    Raises SsrfError if any resolved address is private, loopback,
    link-local, or otherwise reserved.
    """
    hostname = urllib.parse.urlparse(url).hostname
    if not hostname:
        raise ValueError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise FetchError(url, f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        try:
            ip = ipaddress.ip_address(addrinfo[4][0])
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


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Raise FetchError after more than *max_redirects* redirects."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(req.full_url, f"too many redirects (>{self._max_redirects})")
        validate_scheme(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


# ------------------------------------------------------------------
# Extraction + conversion
# ------------------------------------------------------------------


def extract_article(html: str, url: str = "") -> Article:
    """Pick the main article out of a full HTML page.

    Navigation, footers, comments and boilerplate are dropped by trafilatura.
    Malformed markup is tolerated.

    Raises:
        ExtractionError: no readable article body was found.
    """
    content = trafilatura.extract(
        html,
        url=url or None,
        output_format="html",
        include_comments=False,
        include_tables=True,
        include_images=False,
        include_links=True,
        include_formatting=True,
    )
    if not content or not content.strip():
        raise ExtractionError(url or "<html>")
    return Article(title=_page_title(html), html=content)


def _page_title(html: str) -> str | None:
    soup = BeautifulSoup(html, "html.parser")
    for tag in (soup.find("title"), soup.find("h1")):
        if tag is not None:
            text = tag.get_text().strip()
            if text:
                return text
    return None


# html2text marks <pre> blocks with [code] / [/code] lines and indents their body by 4.
_CODE_BLOCK_RE = re.compile(
    r"^[ \t]*\[code\][ \t]*\n(?P<body>.*?)\[/code\][ \t]*$",
    re.MULTILINE | re.DOTALL,
)


def _fence(match: re.Match[str]) -> str:
    lines = [line[4:] if line.startswith("    ") else line for line in match["body"].split("\n")]
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    return "```\n" + "\n".join(lines) + "\n```"


def _converter() -> html2text.HTML2Text:
    h2t = html2text.HTML2Text()
    h2t.ignore_links = False
    h2t.ignore_images = True
    h2t.body_width = 0
    h2t.mark_code = True
    return h2t


def html_to_markdown(html: str) -> str:
    """Convert article HTML to Markdown.

    ATX (``#``) headings, fenced code blocks, links kept, images dropped,
    no hard line wrapping.
    """
    markdown = _converter().handle(html)
    return _CODE_BLOCK_RE.sub(_fence, markdown).strip()


def content_hash(text: str) -> str:
    """SHA-256 hex digest of the UTF-8 encoding of *text*."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
