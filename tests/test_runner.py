"""Tests for the audit orchestration."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import auditor.runner as runner
from auditor.auth import AuthConfigError, AuthType
from auditor.axe import RuleEngineError
from auditor.config import AuditSettings
from auditor.evaluator import ComplianceStatus, PageVerdict
from auditor.requirements import REQUIREMENTS
from auditor.runner import (
    ERROR_PAGE_TITLE,
    InvalidURLError,
    PageResult,
    probe_authentication,
    run_audit,
    summarize,
    validate_url,
)
from auditor.site import CrawlPolicy, CrawlPolicyError
from conftest import FakeRuleEngine, FakeSession, page_html, session_factory_for, violation

START = "https://example.com/"


def _links(*hrefs: str, title: str = "Example Page") -> str:
    anchors = "".join(f'<a href="{href}">link</a>' for href in hrefs)
    return page_html(title=title, body=f'<a href="#main">Skip</a><h1>Title</h1>{anchors}')


class TestValidateUrl:
    @pytest.mark.parametrize("url", ["https://example.com", "http://localhost:8080/a?b=1"])
    def test_valid(self, url):
        assert validate_url(f"  {url} ") == url

    @pytest.mark.parametrize("url", ["", "example.com", "/relative", "ftp://example.com", "http://", "http://host:99999/"])
    def test_invalid(self, url):
        with pytest.raises(InvalidURLError):
            validate_url(url)


class TestSummary:
    def test_compliance_rate_rounds(self):
        verdicts = [
            PageVerdict(req.id, ComplianceStatus.comply if i < 30 else ComplianceStatus.does_not_comply)
            for i, req in enumerate(REQUIREMENTS)
        ]
        summary = summarize(START, [PageResult(url=START, title="Home", verdicts=verdicts)])

        assert summary.total_requirements == 38
        assert summary.comply == 30
        assert summary.do_not_comply == 8
        assert summary.overall_compliance_rate == 79

    def test_empty_run_rate_is_zero(self):
        summary = summarize(START, [PageResult(url=START, title=ERROR_PAGE_TITLE, errors=["boom"])])
        assert summary.pages_analyzed == 1
        assert summary.total_requirements == 0
        assert summary.overall_compliance_rate == 0

    def test_page_rates(self):
        verdicts = [
            PageVerdict("1.1.1", ComplianceStatus.comply),
            PageVerdict("1.3.1", ComplianceStatus.partially_comply, ("No H1 heading found on page",)),
            PageVerdict("2.4.1", ComplianceStatus.does_not_comply, ("No skip navigation links found",)),
        ]
        page = PageResult(url=START, title="Home", verdicts=verdicts)

        assert page.compliance_rate == 33
        assert page.issue_count == 2
        assert page.count(ComplianceStatus.partially_comply) == 1
        assert not page.failed

    def test_crawled_at_is_utc_iso(self):
        page = PageResult(url=START, title="Home")
        assert page.crawled_at.endswith("+00:00")


class TestRunAudit:
    @pytest.mark.asyncio
    async def test_single_page(self, fast_settings):
        session = FakeSession({START: _links(title="Hello World")})
        factory = session_factory_for(session)

        report = await run_audit(
            START, settings=fast_settings, session_factory=factory, rule_engine=FakeRuleEngine()
        )

        assert [page.url for page in report.pages] == [START]
        page = report.pages[0]
        assert page.title == "Hello World"
        assert len(page.verdicts) == len(REQUIREMENTS)
        assert report.summary.pages_analyzed == 1
        assert report.summary.total_requirements == 38
        assert report.summary.overall_compliance_rate == 100
        assert report.summary.crawling_enabled is False
        assert report.crawl_stats is None
        assert session.closed is True

    @pytest.mark.asyncio
    async def test_invalid_url_fails_before_session(self, fast_settings):
        factory = session_factory_for(FakeSession())

        with pytest.raises(InvalidURLError):
            await run_audit("not a url", settings=fast_settings, session_factory=factory)

        assert factory.opened == []

    @pytest.mark.asyncio
    async def test_invalid_auth_fails_before_session(self, fast_settings):
        factory = session_factory_for(FakeSession())

        with pytest.raises(AuthConfigError):
            await run_audit(START, {"type": "magic"}, settings=fast_settings, session_factory=factory)

        assert factory.opened == []

    @pytest.mark.asyncio
    async def test_invalid_crawl_fails_before_session(self, fast_settings):
        factory = session_factory_for(FakeSession())

        with pytest.raises(CrawlPolicyError):
            await run_audit(START, crawl={"maxPages": 0}, settings=fast_settings, session_factory=factory)

        assert factory.opened == []

    @pytest.mark.asyncio
    async def test_crawl_records_failed_pages(self, fast_settings):
        session = FakeSession(
            {
                START: _links("/a", "/broken"),
                "https://example.com/a": _links(title="Page A"),
            },
            failing={"https://example.com/broken"},
        )

        report = await run_audit(
            START,
            crawl={"enabled": True, "maxPages": 5},
            settings=fast_settings,
            session_factory=session_factory_for(session),
            rule_engine=FakeRuleEngine(),
        )

        assert [page.url for page in report.pages] == [
            START,
            "https://example.com/a",
            "https://example.com/broken",
        ]
        broken = report.pages[2]
        assert broken.title == ERROR_PAGE_TITLE
        assert broken.verdicts == []
        assert broken.errors and "broken" in broken.errors[0]
        assert report.summary.pages_analyzed == 3
        assert report.summary.total_requirements == 2 * len(REQUIREMENTS)
        assert report.summary.crawling_enabled is True
        assert report.crawl_stats.navigation_failures == 1

    @pytest.mark.asyncio
    async def test_rule_engine_failure_is_page_level(self, fast_settings):
        async def broken_engine(session):
            raise RuleEngineError("axe-core run failed: boom")

        session = FakeSession({START: _links()})

        report = await run_audit(
            START,
            settings=fast_settings,
            session_factory=session_factory_for(session),
            rule_engine=broken_engine,
        )

        assert report.pages[0].errors == ["axe-core run failed: boom"]
        assert report.pages[0].verdicts == []

    @pytest.mark.asyncio
    async def test_session_closed_on_unexpected_error(self, fast_settings):
        async def exploding_engine(session):
            raise KeyError("unexpected")

        session = FakeSession({START: _links()})

        with pytest.raises(KeyError):
            await run_audit(
                START,
                settings=fast_settings,
                session_factory=session_factory_for(session),
                rule_engine=exploding_engine,
            )

        assert session.closed is True

    @pytest.mark.asyncio
    async def test_start_navigation_failure_is_not_fatal(self, fast_settings):
        session = FakeSession(failing={START})

        report = await run_audit(
            START,
            settings=fast_settings,
            session_factory=session_factory_for(session),
            rule_engine=FakeRuleEngine(),
        )

        assert report.pages[0].title == ERROR_PAGE_TITLE

    @pytest.mark.asyncio
    async def test_failed_login_continues_unauthenticated(self, fast_settings):
        session = FakeSession({START: _links()}, selectors={"#email"})
        auth = {
            "type": "form",
            "username": "u",
            "password": "p",
            "usernameSelector": "#email",
            "passwordSelector": "#password",
        }

        report = await run_audit(
            START,
            auth,
            settings=fast_settings,
            session_factory=session_factory_for(session),
            rule_engine=FakeRuleEngine(),
        )

        assert report.auth.succeeded is False
        assert report.summary.authentication_used is True
        assert len(report.pages[0].verdicts) == len(REQUIREMENTS)

    @pytest.mark.asyncio
    async def test_delay_between_page_evaluations(self, fast_settings, monkeypatch):
        delays = []

        async def fake_sleep(seconds):
            delays.append(seconds)

        monkeypatch.setattr(runner, "asyncio", SimpleNamespace(sleep=fake_sleep))
        session = FakeSession({START: _links("/a", "/b")})
        settings = AuditSettings(page_delay=1.0, axe_cache_dir=fast_settings.axe_cache_dir)

        await run_audit(
            START,
            crawl=CrawlPolicy(enabled=True),
            settings=settings,
            session_factory=session_factory_for(session),
            rule_engine=FakeRuleEngine(),
        )

        assert delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_violations_reduce_rate(self, fast_settings):
        session = FakeSession({START: _links()})

        report = await run_audit(
            START,
            settings=fast_settings,
            session_factory=session_factory_for(session),
            rule_engine=FakeRuleEngine(violations=(violation("color-contrast", "wcag2aa", "wcag143"),)),
        )

        assert report.summary.do_not_comply == 1
        assert report.summary.overall_compliance_rate == round(37 / 38 * 100)


class TestProbeAuthentication:
    @pytest.mark.asyncio
    async def test_login_changes_page(self, fast_settings):
        login = "https://example.com/login"
        dashboard = "https://example.com/dashboard"
        session = FakeSession(
            {
                login: page_html(title="Sign in", body='<input id="email"><input id="password" type="password">'),
                dashboard: page_html(title="Dashboard", body='<a href="/logout">Logout</a>'),
            },
            selectors={"#email", "#password", "#go"},
            click_targets={"#go": dashboard},
            navigates=True,
        )
        auth = {
            "type": "form",
            "username": "u",
            "password": "p",
            "usernameSelector": "#email",
            "passwordSelector": "#password",
            "submitSelector": "#go",
        }

        probe = await probe_authentication(
            login, auth, settings=fast_settings, session_factory=session_factory_for(session)
        )

        assert probe.auth_type is AuthType.form
        assert probe.before.url == login
        assert probe.before.has_keywords
        assert probe.after.url == dashboard
        assert "logout" in probe.after.keywords_found
        assert probe.success is True
        assert session.closed is True

    @pytest.mark.asyncio
    async def test_unchanged_page_is_not_success(self, fast_settings):
        session = FakeSession({START: page_html(title="Welcome", body="<p>Hello</p>")})

        probe = await probe_authentication(
            START,
            {"type": "basic", "username": "u", "password": "p"},
            settings=fast_settings,
            session_factory=session_factory_for(session),
        )

        assert probe.result.succeeded is True
        assert probe.success is False
