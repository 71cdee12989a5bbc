"""Audit orchestration: authenticate, discover pages, evaluate each one.

``run_audit`` is the top-level workflow. It owns exactly one browsing
session per run and closes it on every exit path.

Example usage:

    from auditor.runner import run_audit_sync
    from auditor.site import CrawlPolicy

    report = run_audit_sync(
        "https://example.com",
        crawl=CrawlPolicy(enabled=True, max_pages=5),
    )
    print(report.summary.overall_compliance_rate)
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any,
    AsyncContextManager,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)
from urllib.parse import urlsplit

from .auth import (
    LOGGED_IN_KEYWORDS,
    LOGIN_KEYWORDS,
    AuthConfig,
    AuthResult,
    AuthType,
    SessionSnapshot,
    authenticate,
    take_snapshot,
)
from .axe import RuleEngineError
from .browser import BrowserSession, BrowserSessionError, open_browser_session
from .config import AuditSettings
from .evaluator import ComplianceStatus, PageVerdict, RuleEngine, evaluate_page
from .requirements import REQUIREMENTS, Requirement
from .site import CrawlPolicy, CrawlStats, discover_urls

LOGGER = logging.getLogger(__name__)

ERROR_PAGE_TITLE = "Error loading page"

SessionFactory = Callable[[AuditSettings], AsyncContextManager[BrowserSession]]
AuthInput = Union[AuthConfig, Mapping[str, Any], None]
CrawlInput = Union[CrawlPolicy, Mapping[str, Any], None]


class InvalidURLError(ValueError):
    """Raised when the start URL is not an absolute http(s) URL."""


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class PageResult:
    """Verdicts for one visited URL; ``verdicts`` is empty iff ``errors`` is set."""

    url: str
    title: str
    verdicts: List[PageVerdict] = field(default_factory=list)
    crawled_at: str = field(default_factory=_timestamp)
    errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def compliance_rate(self) -> int:
        """Percentage of ``Comply`` verdicts on this page, rounded."""
        return _rate(self.count(ComplianceStatus.comply), len(self.verdicts))

    @property
    def issue_count(self) -> int:
        """Number of requirements with at least one recorded issue."""
        return sum(1 for verdict in self.verdicts if verdict.issues)

    def count(self, status: ComplianceStatus) -> int:
        return sum(1 for verdict in self.verdicts if verdict.status is status)


@dataclass
class AuditSummary:
    """Cross-page tallies for one audit run."""

    start_url: str
    pages_analyzed: int = 0
    total_requirements: int = 0
    comply: int = 0
    do_not_comply: int = 0
    partially_comply: int = 0
    does_not_apply: int = 0
    authentication_used: bool = False
    crawling_enabled: bool = False

    @property
    def overall_compliance_rate(self) -> int:
        return _rate(self.comply, self.total_requirements)


@dataclass
class AuditReport:
    """Everything one run produced, in page visiting order."""

    start_url: str
    pages: List[PageResult]
    summary: AuditSummary
    catalog: Tuple[Requirement, ...] = REQUIREMENTS
    auth: Optional[AuthResult] = None
    crawl_stats: Optional[CrawlStats] = None


@dataclass
class AuthProbe:
    """Before/after observation of a login attempt."""

    auth_type: AuthType
    before: SessionSnapshot
    after: SessionSnapshot
    result: AuthResult

    @property
    def success(self) -> bool:
        """Heuristic: the URL or title changed, or logged-in markers are present."""
        return (
            self.before.url != self.after.url
            or self.before.title != self.after.title
            or self.after.has_keywords
        )


def _rate(part: int, total: int) -> int:
    if total <= 0:
        return 0
    return round(part / total * 100)


def validate_url(url: str) -> str:
    """Return *url* stripped, or raise ``InvalidURLError``."""
    candidate = (url or "").strip()
    try:
        parts = urlsplit(candidate)
        # Accessing .port validates it
        parts.port
    except ValueError as exc:
        raise InvalidURLError(f"Invalid URL: {url!r}") from exc
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise InvalidURLError(f"Invalid URL: {url!r} (expected an absolute http(s) URL)")
    return candidate


def coerce_auth(auth: AuthInput) -> AuthConfig:
    if isinstance(auth, AuthConfig):
        return auth
    return AuthConfig.from_dict(auth)


def coerce_crawl(crawl: CrawlInput) -> CrawlPolicy:
    if isinstance(crawl, CrawlPolicy):
        return crawl
    return CrawlPolicy.from_dict(crawl)


def summarize(
    start_url: str,
    pages: Sequence[PageResult],
    *,
    authentication_used: bool = False,
    crawling_enabled: bool = False,
) -> AuditSummary:
    """Tally verdict statuses across *pages*."""
    counts: Counter = Counter(
        verdict.status for page in pages for verdict in page.verdicts
    )
    return AuditSummary(
        start_url=start_url,
        pages_analyzed=len(pages),
        total_requirements=sum(counts.values()),
        comply=counts[ComplianceStatus.comply],
        do_not_comply=counts[ComplianceStatus.does_not_comply],
        partially_comply=counts[ComplianceStatus.partially_comply],
        does_not_apply=counts[ComplianceStatus.not_applicable],
        authentication_used=authentication_used,
        crawling_enabled=crawling_enabled,
    )


async def _analyze_page(
    session: BrowserSession,
    url: str,
    catalog: Sequence[Requirement],
    rule_engine: Optional[RuleEngine],
) -> PageResult:
    try:
        await session.goto(url)
        title = await session.title()
        verdicts = await evaluate_page(session, url, catalog, rule_engine=rule_engine)
    except (BrowserSessionError, RuleEngineError) as exc:
        LOGGER.warning("Error analyzing %s: %s", url, exc)
        return PageResult(url=url, title=ERROR_PAGE_TITLE, errors=[str(exc)])
    return PageResult(url=url, title=title, verdicts=verdicts)


async def run_audit(
    url: str,
    auth: AuthInput = None,
    crawl: CrawlInput = None,
    *,
    settings: Optional[AuditSettings] = None,
    catalog: Sequence[Requirement] = REQUIREMENTS,
    session_factory: SessionFactory = open_browser_session,
    rule_engine: Optional[RuleEngine] = None,
) -> AuditReport:
    """
    Audit one page, or a crawled set of pages, against the requirement catalog.

    Args:
        url: Start URL (absolute http/https).
        auth: AuthConfig, or a dict accepted by ``AuthConfig.from_dict``.
        crawl: CrawlPolicy, or a dict accepted by ``CrawlPolicy.from_dict``.
        settings: Browser and pacing settings (defaults to the environment).
        catalog: Requirements to evaluate on every page.
        session_factory: Opens the browsing session (a real Chromium by default).
        rule_engine: Override for the automated rule engine (``run_axe``).

    Returns:
        AuditReport with one PageResult per visited URL and the summary.

    Raises:
        InvalidURLError: If *url* is not an absolute http(s) URL.
        AuthConfigError: If *auth* is invalid.
        CrawlPolicyError: If *crawl* is invalid.
        BrowserLaunchError: If no browser session can be opened.
    """
    start_url = validate_url(url)
    auth_config = coerce_auth(auth)
    policy = coerce_crawl(crawl)
    settings = settings or AuditSettings.from_env()
    catalog = tuple(catalog)

    LOGGER.info("Starting audit of %s", start_url)
    async with session_factory(settings) as session:
        try:
            await session.goto(start_url)
        except BrowserSessionError as exc:
            LOGGER.warning("Could not open start URL %s: %s", start_url, exc)

        auth_result = await authenticate(session, auth_config)
        if auth_config.type is not AuthType.none:
            LOGGER.info(
                "Authentication (%s): %s",
                auth_config.type.value,
                "succeeded" if auth_result.succeeded else "failed, continuing unauthenticated",
            )

        crawl_stats: Optional[CrawlStats] = None
        if policy.enabled:
            crawl_stats = CrawlStats()
            urls = await discover_urls(session, start_url, policy, stats=crawl_stats)
        else:
            urls = [start_url]

        pages: List[PageResult] = []
        for index, page_url in enumerate(urls, start=1):
            if index > 1 and settings.page_delay:
                await asyncio.sleep(settings.page_delay)
            LOGGER.info("Analyzing page %d/%d: %s", index, len(urls), page_url)
            pages.append(await _analyze_page(session, page_url, catalog, rule_engine))

    summary = summarize(
        start_url,
        pages,
        authentication_used=auth_config.type is not AuthType.none,
        crawling_enabled=policy.enabled,
    )
    LOGGER.info(
        "Audit complete: %d page(s), overall compliance %d%%",
        summary.pages_analyzed,
        summary.overall_compliance_rate,
    )
    return AuditReport(
        start_url=start_url,
        pages=pages,
        summary=summary,
        catalog=catalog,
        auth=auth_result,
        crawl_stats=crawl_stats,
    )


def run_audit_sync(
    url: str,
    auth: AuthInput = None,
    crawl: CrawlInput = None,
    *,
    settings: Optional[AuditSettings] = None,
) -> AuditReport:
    """Synchronous wrapper for run_audit."""
    return asyncio.run(run_audit(url, auth, crawl, settings=settings))


async def probe_authentication(
    url: str,
    auth: AuthInput,
    *,
    settings: Optional[AuditSettings] = None,
    session_factory: SessionFactory = open_browser_session,
) -> AuthProbe:
    """
    Try a login and report how the session changed.

    Raises:
        InvalidURLError: If *url* is invalid.
        AuthConfigError: If *auth* is invalid.
        BrowserLaunchError: If no browser session can be opened.
        BrowserSessionError: If the page cannot be loaded or inspected.
    """
    start_url = validate_url(url)
    auth_config = coerce_auth(auth)
    settings = settings or AuditSettings.from_env()

    async with session_factory(settings) as session:
        await session.goto(start_url)
        before = await take_snapshot(session, LOGIN_KEYWORDS)
        result = await authenticate(session, auth_config)
        after = await take_snapshot(session, LOGGED_IN_KEYWORDS)

    probe = AuthProbe(auth_type=auth_config.type, before=before, after=after, result=result)
    LOGGER.info("Authentication probe for %s: success=%s", start_url, probe.success)
    return probe


def probe_authentication_sync(
    url: str,
    auth: AuthInput,
    *,
    settings: Optional[AuditSettings] = None,
) -> AuthProbe:
    """Synchronous wrapper for probe_authentication."""
    return asyncio.run(probe_authentication(url, auth, settings=settings))


async def generate_report_async(
    url: str,
    output_dir: Optional[Union[str, Path]] = None,
    auth: AuthInput = None,
    crawl: CrawlInput = None,
    *,
    settings: Optional[AuditSettings] = None,
    session_factory: SessionFactory = open_browser_session,
    rule_engine: Optional[RuleEngine] = None,
) -> Tuple[Path, AuditReport]:
    """Run an audit and write the CSV report.

    Returns:
        Tuple of (written CSV path, AuditReport).
    """
    from .report import default_report_filename, write_csv_report

    report = await run_audit(
        url,
        auth,
        crawl,
        settings=settings,
        session_factory=session_factory,
        rule_engine=rule_engine,
    )
    auth_type = coerce_auth(auth).type
    filename = default_report_filename(
        report.start_url,
        auth_type=auth_type,
        crawled_pages=report.summary.pages_analyzed if report.summary.crawling_enabled else None,
    )
    path = Path(output_dir).expanduser() / filename if output_dir else Path(filename)
    write_csv_report(report, path)
    return path, report


def generate_report(
    url: str,
    output_dir: Optional[Union[str, Path]] = None,
    auth: AuthInput = None,
    crawl: CrawlInput = None,
    *,
    settings: Optional[AuditSettings] = None,
) -> Tuple[Path, AuditReport]:
    """Synchronous wrapper for generate_report_async."""
    return asyncio.run(generate_report_async(url, output_dir, auth, crawl, settings=settings))


def verdict_rows(report: AuditReport) -> List[Dict[str, Any]]:
    """Flatten a report into one dict per page x requirement."""
    by_id = {requirement.id: requirement for requirement in report.catalog}
    rows: List[Dict[str, Any]] = []
    for page in report.pages:
        for verdict in page.verdicts:
            requirement = by_id[verdict.requirement_id]
            rows.append(
                {
                    **requirement.to_dict(),
                    "status": verdict.status.value,
                    "issues": list(verdict.issues),
                    "page_url": page.url,
                    "page_title": page.title,
                }
            )
    return rows
