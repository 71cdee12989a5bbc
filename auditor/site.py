"""Site crawler for multi-page BFS discovery of pages to audit.

The crawler drives the (already authenticated) browsing session breadth-first
through hyperlinks, starting from a seed URL, and returns the ordered list of
in-scope page URLs. It never evaluates pages itself.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Set, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from .browser import BrowserSession, BrowserSessionError

LOGGER = logging.getLogger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443}

# Links that never lead to auditable HTML content
_DOCUMENT_EXTENSIONS = re.compile(r"\.(pdf|doc|docx|xls|xlsx|ppt|pptx|zip|rar|exe|dmg)$", re.IGNORECASE)
_ASSET_EXTENSIONS = re.compile(r"\.(jpg|jpeg|png|gif|svg|ico|css|js|woff|woff2|ttf)$", re.IGNORECASE)
_LOGOUT_PATTERN = re.compile(r"logout|signout|sign-out", re.IGNORECASE)
_NON_HTTP_PREFIX = re.compile(r"^(mailto|tel|javascript):", re.IGNORECASE)


class CrawlPolicyError(ValueError):
    """Raised when crawl options are invalid or out of range."""


# camelCase keys accepted from tool/JSON input
_POLICY_ALIASES = {
    "maxPages": "max_pages",
    "maxDepth": "max_depth",
    "includePaths": "include_paths",
    "excludePaths": "exclude_paths",
    "sameOriginOnly": "same_origin_only",
    "followExternalLinks": "follow_external_links",
}

_BOOL_OPTIONS = ("enabled", "same_origin_only", "follow_external_links")
_PATH_OPTIONS = ("include_paths", "exclude_paths")


def _number(key: str, value: Any, convert: Callable[[Any], Any]) -> Any:
    if isinstance(value, bool):
        raise CrawlPolicyError(f"Crawl option '{key}' must be a number")
    try:
        return convert(value)
    except (TypeError, ValueError) as exc:
        raise CrawlPolicyError(f"Crawl option '{key}' must be a number, got {value!r}") from exc


@dataclass(frozen=True)
class CrawlPolicy:
    """Options for site crawling.

    Attributes:
        enabled: Crawl at all; when False only the start URL is audited.
        max_pages: Upper bound on discovered URLs, start URL included.
        max_depth: Maximum link distance from the start URL (0 = seed only).
        include_paths: If set, a link path must contain one of these.
        exclude_paths: A link path containing any of these is skipped.
        same_origin_only: Reject links to other origins.
        follow_external_links: Allow other origins when same_origin_only is off.
        delay_between_pages: Seconds to wait after each crawl navigation.
    """

    enabled: bool = False
    max_pages: int = 10
    max_depth: int = 2
    include_paths: Tuple[str, ...] = ()
    exclude_paths: Tuple[str, ...] = ()
    same_origin_only: bool = True
    follow_external_links: bool = False
    delay_between_pages: float = 0.0

    def __post_init__(self) -> None:
        if self.max_pages < 1:
            raise CrawlPolicyError("max_pages must be at least 1")
        if self.max_depth < 0:
            raise CrawlPolicyError("max_depth must not be negative")
        if self.delay_between_pages < 0:
            raise CrawlPolicyError("delay_between_pages must not be negative")

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "CrawlPolicy":
        """Build a policy from tool/JSON input (camelCase or snake_case).

        ``delayBetweenPages`` is read as milliseconds, ``delay_between_pages``
        as seconds.

        Raises:
            CrawlPolicyError: On unknown options or values of the wrong type.
        """
        if not data:
            return cls()
        if not isinstance(data, Mapping):
            raise CrawlPolicyError("Crawl configuration must be an object")
        values: Dict[str, Any] = {}
        for key, value in data.items():
            if value is None:
                continue
            if key == "delayBetweenPages":
                values["delay_between_pages"] = _number(key, value, float) / 1000
                continue
            name = _POLICY_ALIASES.get(key, key)
            if name not in cls.__dataclass_fields__:
                raise CrawlPolicyError(f"Unsupported crawl option: {key}")
            if name in _BOOL_OPTIONS:
                if not isinstance(value, bool):
                    raise CrawlPolicyError(f"Crawl option '{key}' must be true or false")
            elif name in _PATH_OPTIONS:
                if not isinstance(value, (list, tuple)) or not all(
                    isinstance(path, str) for path in value
                ):
                    raise CrawlPolicyError(f"Crawl option '{key}' must be a list of strings")
                value = tuple(path for path in value if path)
            elif name == "delay_between_pages":
                value = _number(key, value, float)
            else:
                value = _number(key, value, int)
            values[name] = value
        return cls(**values)


@dataclass(frozen=True)
class FrontierEntry:
    """A URL waiting to be visited, with its link distance from the seed."""

    url: str
    depth: int


@dataclass
class CrawlStats:
    """Counters collected while discovering pages."""

    pages_visited: int = 0
    navigation_failures: int = 0
    links_rejected: int = 0
    errors: List[dict] = field(default_factory=list)


def _normalize_host(host: Optional[str]) -> str:
    """Normalize hostname by lowercasing (port handled separately)."""
    if not host:
        return ""
    return host.lower()


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` with default ports dropped."""
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = _normalize_host(parts.hostname)
    port = parts.port
    if port is None or _DEFAULT_PORTS.get(scheme) == port:
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def normalize_url(url: str) -> str:
    """Canonical form used for de-duplication: origin + path, no query/fragment.

    Raises:
        ValueError: If the URL has no scheme/host or an invalid port.
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        raise ValueError(f"Not an absolute URL: {url}")
    origin = origin_of(url)
    return urlunsplit(urlsplit(origin)._replace(path=parts.path or "/"))


def extract_links(html: str, page_url: str) -> List[str]:
    """Return raw ``href`` values of ``a[href]`` elements, resolved to absolute URLs.

    Fragment-only and non-HTTP hrefs are returned unresolved so that the
    filter can recognise them.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    base_tag = soup.find("base", href=True)
    base_url = urljoin(page_url, base_tag["href"]) if base_tag else page_url

    links: List[str] = []
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith("#") or _NON_HTTP_PREFIX.match(href):
            links.append(href)
            continue
        try:
            links.append(urljoin(base_url, href))
        except ValueError:
            continue
    return links


class LinkFilter:
    """Accept/reject decisions for discovered links under a ``CrawlPolicy``."""

    def __init__(self, start_url: str, policy: CrawlPolicy):
        self._origin = origin_of(start_url)
        self._policy = policy

    def accept(self, href: str) -> Optional[str]:
        """Return the normalized URL if *href* is in scope, else None."""
        if not href or href.startswith("#") or _NON_HTTP_PREFIX.match(href):
            return None
        try:
            parts = urlsplit(href)
            if parts.scheme.lower() not in _DEFAULT_PORTS:
                return None
            normalized = normalize_url(href)
            link_origin = origin_of(href)
        except ValueError:
            # Malformed links are discarded silently
            return None

        policy = self._policy
        external = link_origin != self._origin
        if external and (policy.same_origin_only or not policy.follow_external_links):
            return None

        path = parts.path or "/"
        if policy.include_paths and not any(p in path for p in policy.include_paths):
            return None
        if policy.exclude_paths and any(p in path for p in policy.exclude_paths):
            return None

        if _DOCUMENT_EXTENSIONS.search(path) or _ASSET_EXTENSIONS.search(path):
            return None
        if _LOGOUT_PATTERN.search(href):
            return None
        return normalized


async def _visit(session: BrowserSession, url: str, delay: float) -> Tuple[str, str]:
    await session.goto(url)
    if delay:
        await asyncio.sleep(delay)
    return await session.content(), session.url or url


async def discover_urls(
    session: BrowserSession,
    start_url: str,
    policy: Optional[CrawlPolicy] = None,
    *,
    stats: Optional[CrawlStats] = None,
) -> List[str]:
    """Discover in-scope pages breadth-first, starting at *start_url*.

    Args:
        session: Browsing session used for navigation; left on the last page visited.
        start_url: Seed URL; always the first element of the result.
        policy: Crawl bounds and filters (defaults to ``CrawlPolicy()``).
        stats: Optional counters updated in place.

    Returns:
        Discovered URLs in BFS order, at most ``policy.max_pages`` long.
    """
    policy = policy or CrawlPolicy()
    stats = stats if stats is not None else CrawlStats()
    link_filter = LinkFilter(start_url, policy)

    discovered: List[str] = [start_url]
    seen: Set[str] = {normalize_url(start_url)}
    visited: Set[str] = set()
    frontier: Deque[FrontierEntry] = deque([FrontierEntry(start_url, 0)])

    LOGGER.info(
        "Starting crawl from %s (max_pages=%d, max_depth=%d, same_origin_only=%s)",
        start_url,
        policy.max_pages,
        policy.max_depth,
        policy.same_origin_only,
    )

    while frontier and len(discovered) < policy.max_pages:
        entry = frontier.popleft()
        key = normalize_url(entry.url)
        if key in visited or entry.depth > policy.max_depth:
            continue
        visited.add(key)

        LOGGER.debug("Crawling %s (depth %d)", entry.url, entry.depth)
        try:
            html, page_url = await _visit(session, entry.url, policy.delay_between_pages)
        except BrowserSessionError as exc:
            LOGGER.warning("Failed to crawl %s: %s", entry.url, exc)
            stats.navigation_failures += 1
            stats.errors.append({"url": entry.url, "error": str(exc), "stage": "crawl"})
            continue
        stats.pages_visited += 1

        for href in extract_links(html, page_url):
            candidate = link_filter.accept(href)
            if candidate is None:
                stats.links_rejected += 1
                continue
            if candidate in seen:
                continue
            seen.add(candidate)
            discovered.append(candidate)
            if entry.depth < policy.max_depth:
                frontier.append(FrontierEntry(candidate, entry.depth + 1))
            if len(discovered) >= policy.max_pages:
                LOGGER.info("Reached page limit of %d", policy.max_pages)
                break

    LOGGER.info("Crawling completed. Found %d page(s) to analyze.", len(discovered))
    return discovered[: policy.max_pages]

