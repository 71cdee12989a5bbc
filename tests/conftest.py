"""Shared fakes and pytest hooks.

``FakeSession`` implements the ``BrowserSession`` protocol over a dict of
``url -> html`` so that crawling, login flows and evaluation run without a
real browser.
"""

from __future__ import annotations

import re
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytest

from auditor.axe import AxeResults, AxeViolation
from auditor.browser import BrowserSessionError, BrowserTimeoutError
from auditor.config import AuditSettings

_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


class FakeSession:
    """In-memory browsing session recording every call in ``calls``."""

    def __init__(
        self,
        pages: Optional[Dict[str, str]] = None,
        *,
        failing: Iterable[str] = (),
        selectors: Iterable[str] = (),
        navigates: bool = False,
        click_targets: Optional[Dict[str, str]] = None,
    ):
        self.pages: Dict[str, str] = dict(pages or {})
        self.failing = set(failing)
        self.selectors = set(selectors)
        self.navigates = navigates
        self.click_targets = dict(click_targets or {})
        self.current = "about:blank"
        self.calls: List[Tuple[str, Any]] = []
        self.cookies: List[Dict[str, Any]] = []
        self.basic_auth: Optional[Tuple[str, str]] = None
        self.filled: Dict[str, str] = {}
        self.visited: List[str] = []
        self.closed = False

    def actions(self, name: str) -> List[Any]:
        return [arg for action, arg in self.calls if action == name]

    @property
    def url(self) -> str:
        return self.current

    async def goto(self, url: str, *, timeout_ms: Optional[int] = None) -> None:
        self.calls.append(("goto", url))
        if url in self.failing:
            raise BrowserTimeoutError(f"Timed out while navigating to {url}")
        self.visited.append(url)
        self.current = url

    async def title(self) -> str:
        match = _TITLE_RE.search(await self.content())
        return match.group(1).strip() if match else ""

    async def content(self) -> str:
        return self.pages.get(self.current, "<html><body></body></html>")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.calls.append(("evaluate", script))
        return {"violations": []}

    async def add_script(self, content: str) -> None:
        self.calls.append(("add_script", content))

    async def wait_for_selector(self, selector: str, *, timeout_ms: int) -> None:
        self.calls.append(("wait_for_selector", selector))
        if selector not in self.selectors:
            raise BrowserTimeoutError(f"Timed out while waiting for '{selector}'")

    async def fill(self, selector: str, text: str) -> None:
        self.calls.append(("fill", selector))
        if selector not in self.selectors:
            raise BrowserSessionError(f"No element matches '{selector}'")
        self.filled[selector] = text

    async def click(self, selector: str, *, timeout_ms: int = 5000) -> None:
        self.calls.append(("click", selector))
        if selector not in self.selectors:
            raise BrowserTimeoutError(f"Timed out while clicking '{selector}'")
        if selector in self.click_targets:
            self.current = self.click_targets[selector]

    async def wait_for_navigation(self, *, timeout_ms: int) -> None:
        self.calls.append(("wait_for_navigation", timeout_ms))
        if not self.navigates:
            raise BrowserTimeoutError("Timed out while waiting for navigation")

    async def add_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        self.calls.append(("add_cookies", len(cookies)))
        self.cookies.extend(cookies)

    async def set_basic_auth(self, username: str, password: str) -> None:
        self.calls.append(("set_basic_auth", username))
        self.basic_auth = (username, password)


@dataclass
class FakeRuleEngine:
    """Stand-in for ``run_axe`` returning fixed violations."""

    violations: Tuple[AxeViolation, ...] = ()
    calls: int = 0

    async def __call__(self, session) -> AxeResults:
        self.calls += 1
        return AxeResults(violations=list(self.violations))


def violation(rule_id: str, *tags: str, nodes: int = 1) -> AxeViolation:
    return AxeViolation(id=rule_id, tags=tuple(tags), node_count=nodes)


def page_html(
    *,
    title: Optional[str] = "Example Page",
    lang: Optional[str] = "en",
    body: str = '<a href="#main">Skip to content</a><h1>Welcome</h1>',
) -> str:
    lang_attr = f' lang="{lang}"' if lang else ""
    head = f"<title>{title}</title>" if title is not None else ""
    return f"<html{lang_attr}><head>{head}</head><body>{body}</body></html>"


def session_factory_for(session: FakeSession):
    """Build a ``session_factory`` that yields *session* and marks it closed."""
    opened: List[AuditSettings] = []

    @asynccontextmanager
    async def factory(settings: AuditSettings):
        opened.append(settings)
        try:
            yield session
        finally:
            session.closed = True

    factory.opened = opened  # type: ignore[attr-defined]
    return factory


@pytest.fixture
def fast_settings(tmp_path) -> AuditSettings:
    """Settings without inter-page delay and with an isolated axe cache."""
    return AuditSettings(page_delay=0.0, axe_cache_dir=tmp_path / "axe-cache")


@pytest.fixture(autouse=True)
def _clean_audit_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "AUDIT_HEADLESS",
        "AUDIT_USER_AGENT",
        "AUDIT_NAVIGATION_TIMEOUT_MS",
        "AUDIT_PAGE_DELAY",
        "AUDIT_REPORT_DIR",
        "AUDIT_AUTH_TYPE",
        "AUDIT_AUTH_COOKIES_FILE",
        "AUDIT_AUTH_USERNAME",
        "AUDIT_AUTH_PASSWORD",
        "AXE_CORE_PATH",
        "AXE_CORE_URL",
        "AXE_CACHE_DIR",
    ):
        monkeypatch.delenv(name, raising=False)


# Strict accounting: a skipped, deselected or xfail test fails the session.
_SKIPS = {"deselected": 0, "skipped": 0, "xfail": 0}


def pytest_deselected(items):  # pragma: no cover - pytest hook
    _SKIPS["deselected"] += len(items)


def pytest_runtest_logreport(report):  # pragma: no cover - pytest hook
    if report.when not in {"setup", "call"}:
        return
    if getattr(report, "wasxfail", False):
        _SKIPS["xfail"] += 1
    elif report.outcome == "skipped":
        _SKIPS["skipped"] += 1


def pytest_sessionfinish(session, exitstatus):  # pragma: no cover - pytest hook
    violations = [f"{name}={count}" for name, count in _SKIPS.items() if count]
    if not violations:
        return
    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_sep(
            "=",
            f"Strict guard failed: test accounting violations ({', '.join(violations)})",
        )
    session.exitstatus = 1
