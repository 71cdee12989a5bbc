"""Browsing-session abstraction used by the crawler, authenticator and evaluator.

The audit core only needs a narrow set of page operations. They are described
by the ``BrowserSession`` protocol; ``PlaywrightSession`` implements it on top
of a single Playwright page. Every Playwright failure is translated into
``BrowserSessionError`` (or ``BrowserTimeoutError`` for bounded waits) so the
rest of the package never depends on engine-specific exception types.

Example usage:

    from auditor.browser import open_browser_session

    async with open_browser_session() as session:
        await session.goto("https://example.com")
        print(await session.title())
"""

from __future__ import annotations

import base64
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple
from urllib.parse import urlsplit

from .config import AuditSettings

LOGGER = logging.getLogger(__name__)

BROWSER_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]


class BrowserSessionError(RuntimeError):
    """Raised when a page operation (navigation, click, script...) fails."""


class BrowserTimeoutError(BrowserSessionError):
    """Raised when a bounded wait exceeds its timeout."""


class BrowserLaunchError(RuntimeError):
    """Raised when no browsing session can be opened at all."""


class BrowserSession(Protocol):
    """Capabilities the audit core consumes from a browser engine."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, *, timeout_ms: Optional[int] = None) -> None: ...

    async def title(self) -> str: ...

    async def content(self) -> str: ...

    async def evaluate(self, script: str, arg: Any = None) -> Any: ...

    async def add_script(self, content: str) -> None: ...

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> None: ...

    async def fill(self, selector: str, text: str) -> None: ...

    async def click(self, selector: str, *, timeout_ms: int = 5000) -> None: ...

    async def wait_for_navigation(self, *, timeout_ms: int) -> None: ...

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None: ...

    async def set_basic_auth(self, username: str, password: str) -> None: ...


def _translate(exc: Exception, action: str) -> BrowserSessionError:
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError

    if isinstance(exc, PlaywrightTimeoutError):
        return BrowserTimeoutError(f"Timed out while {action}")
    return BrowserSessionError(f"Failed while {action}: {exc}")


def _origin(url: str) -> str:
    """``scheme://host[:port]`` with default ports dropped; "" for non-http URLs."""
    try:
        parts = urlsplit(url or "")
        port = parts.port
    except ValueError:
        return ""
    scheme = parts.scheme.lower()
    if scheme not in ("http", "https") or not parts.hostname:
        return ""
    host = parts.hostname.lower()
    if port and port != {"http": 80, "https": 443}[scheme]:
        host = f"{host}:{port}"
    return f"{scheme}://{host}"


class PlaywrightSession:
    """``BrowserSession`` backed by one Playwright page and its context."""

    def __init__(self, page: Any, context: Any, *, navigation_timeout_ms: int = 30000):
        self._page = page
        self._context = context
        self._navigation_timeout_ms = navigation_timeout_ms
        # (origin, Authorization header value)
        self._basic_auth: Optional[Tuple[str, str]] = None
        self._auth_route_installed = False

    @property
    def url(self) -> str:
        return self._page.url or ""

    async def goto(self, url: str, *, timeout_ms: Optional[int] = None) -> None:
        from playwright.async_api import Error as PlaywrightError

        timeout = timeout_ms or self._navigation_timeout_ms
        try:
            await self._page.goto(url, wait_until="networkidle", timeout=timeout)
        except PlaywrightError as exc:
            raise _translate(exc, f"navigating to {url}") from exc

    async def title(self) -> str:
        from playwright.async_api import Error as PlaywrightError

        try:
            return await self._page.title()
        except PlaywrightError as exc:
            raise _translate(exc, "reading the page title") from exc

    async def content(self) -> str:
        from playwright.async_api import Error as PlaywrightError

        try:
            return await self._page.content()
        except PlaywrightError as exc:
            raise _translate(exc, "reading the page content") from exc

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        from playwright.async_api import Error as PlaywrightError

        try:
            return await self._page.evaluate(script, arg)
        except PlaywrightError as exc:
            raise _translate(exc, "evaluating a page script") from exc

    async def add_script(self, content: str) -> None:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._page.add_script_tag(content=content)
        except PlaywrightError as exc:
            raise _translate(exc, "injecting a script") from exc

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> None:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._page.wait_for_selector(selector, timeout=timeout_ms)
        except PlaywrightError as exc:
            raise _translate(exc, f"waiting for '{selector}'") from exc

    async def fill(self, selector: str, text: str) -> None:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._page.fill(selector, text)
        except PlaywrightError as exc:
            raise _translate(exc, f"typing into '{selector}'") from exc

    async def click(self, selector: str, *, timeout_ms: int = 5000) -> None:
        from playwright.async_api import Error as PlaywrightError

        try:
            await self._page.click(selector, timeout=timeout_ms)
        except PlaywrightError as exc:
            raise _translate(exc, f"clicking '{selector}'") from exc

    async def wait_for_navigation(self, *, timeout_ms: int) -> None:
        from playwright.async_api import Error as PlaywrightError

        main_frame = self._page.main_frame
        try:
            await self._page.wait_for_event(
                "framenavigated",
                predicate=lambda frame: frame == main_frame,
                timeout=timeout_ms,
            )
        except PlaywrightError as exc:
            raise _translate(exc, "waiting for navigation") from exc

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        from playwright.async_api import Error as PlaywrightError

        prepared = [self._prepare_cookie(cookie) for cookie in cookies]
        try:
            await self._context.add_cookies(prepared)
        except PlaywrightError as exc:
            raise _translate(exc, "setting cookies") from exc
        LOGGER.info("Installed %d cookie(s)", len(prepared))

    async def set_basic_auth(self, username: str, password: str) -> None:
        """Send basic-auth credentials to the origin of the current page only."""
        from playwright.async_api import Error as PlaywrightError

        origin = _origin(self.url)
        if not origin:
            raise BrowserSessionError(
                "Cannot scope basic-auth credentials: no http(s) page is loaded"
            )
        token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        self._basic_auth = (origin, f"Basic {token}")
        if self._auth_route_installed:
            return
        try:
            await self._context.route("**/*", self._route_with_credentials)
        except PlaywrightError as exc:
            raise _translate(exc, "setting basic-auth credentials") from exc
        self._auth_route_installed = True

    async def _route_with_credentials(self, route: Any, request: Any) -> None:
        if self._basic_auth and _origin(request.url) == self._basic_auth[0]:
            headers = {**request.headers, "authorization": self._basic_auth[1]}
            await route.continue_(headers=headers)
        else:
            await route.continue_()

    def _prepare_cookie(self, cookie: Dict[str, Any]) -> Dict[str, Any]:
        """Playwright needs either ``url`` or ``domain`` + ``path`` per cookie."""
        prepared = dict(cookie)
        if prepared.get("domain"):
            prepared.setdefault("path", "/")
        elif not prepared.get("url"):
            prepared["url"] = self.url
        return prepared


@asynccontextmanager
async def open_browser_session(
    settings: Optional[AuditSettings] = None,
) -> AsyncIterator[PlaywrightSession]:
    """Launch Chromium and yield a session; the browser is always closed.

    Raises:
        BrowserLaunchError: If Playwright is missing or the browser cannot start.
    """
    settings = settings or AuditSettings.from_env()

    try:
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import async_playwright
    except ImportError as exc:
        raise BrowserLaunchError(
            "Playwright is required for auditing. "
            "Install it with: pip install playwright && playwright install chromium"
        ) from exc

    async with async_playwright() as pw:
        try:
            browser = await pw.chromium.launch(headless=settings.headless, args=BROWSER_ARGS)
        except PlaywrightError as exc:
            raise BrowserLaunchError(f"Could not launch Chromium: {exc}") from exc

        try:
            try:
                context = await browser.new_context(
                    user_agent=settings.user_agent,
                    viewport={"width": 1280, "height": 900},
                )
                page = await context.new_page()
            except PlaywrightError as exc:
                raise BrowserLaunchError(f"Could not open a browser page: {exc}") from exc
            LOGGER.debug("Browser session opened (headless=%s)", settings.headless)
            yield PlaywrightSession(
                page,
                context,
                navigation_timeout_ms=settings.navigation_timeout_ms,
            )
        finally:
            try:
                await browser.close()
            except PlaywrightError as exc:
                LOGGER.debug("Ignoring error while closing browser: %s", exc)
