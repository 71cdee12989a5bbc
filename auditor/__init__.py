"""Section 508 / WCAG 2.0 accessibility auditor.

This package audits web pages against the Section 508 (E205.4) checklist of
WCAG 2.0 Level A and AA success criteria. It supports:

- Single page audits
- Site audits with breadth-first crawling (page/depth limits, path filters)
- Authenticated audits (HTTP basic, login forms, SSO providers, cookies)
- JSON, markdown and CSV reports

Example usage:

    from auditor import run_audit_sync, CrawlPolicy

    # Single page
    report = run_audit_sync("https://example.com")
    print(report.summary.overall_compliance_rate)

    # Site audit
    report = run_audit_sync(
        "https://example.com",
        crawl=CrawlPolicy(enabled=True, max_pages=5, max_depth=1),
    )
    for page in report.pages:
        print(page.url, page.compliance_rate)

    # Authenticated audit
    from auditor import AuthConfig
    auth = AuthConfig.from_dict({
        "type": "form",
        "username": "me@example.com",
        "password": "secret",
        "usernameSelector": "#email",
        "passwordSelector": "#password",
    })
    report = await run_audit("https://app.example.com", auth)
"""

from __future__ import annotations

from .auth import (
    AuthConfig,
    AuthConfigError,
    AuthenticationFailed,
    AuthResult,
    AuthType,
    SSOProvider,
    authenticate,
)
from .axe import RuleEngineError
from .browser import (
    BrowserLaunchError,
    BrowserSessionError,
    BrowserTimeoutError,
    open_browser_session,
)
from .config import AuditSettings
from .evaluator import ComplianceStatus, PageVerdict, evaluate_page
from .report import default_report_filename, format_report_json, report_to_dict, write_csv_report
from .requirements import REQUIREMENTS, Requirement, filter_requirements
from .runner import (
    AuditReport,
    AuditSummary,
    AuthProbe,
    InvalidURLError,
    PageResult,
    generate_report,
    generate_report_async,
    probe_authentication,
    probe_authentication_sync,
    run_audit,
    run_audit_sync,
)
from .site import CrawlPolicy, CrawlPolicyError, discover_urls

__all__ = [
    # Catalog
    "Requirement",
    "REQUIREMENTS",
    "filter_requirements",
    # Auth
    "AuthConfig",
    "AuthConfigError",
    "AuthenticationFailed",
    "AuthResult",
    "AuthType",
    "SSOProvider",
    "authenticate",
    # Crawling
    "CrawlPolicy",
    "CrawlPolicyError",
    "discover_urls",
    # Evaluation
    "ComplianceStatus",
    "PageVerdict",
    "RuleEngineError",
    "evaluate_page",
    # Browser
    "BrowserLaunchError",
    "BrowserSessionError",
    "BrowserTimeoutError",
    "open_browser_session",
    # Audit runs
    "AuditSettings",
    "AuditReport",
    "AuditSummary",
    "AuthProbe",
    "InvalidURLError",
    "PageResult",
    "run_audit",
    "run_audit_sync",
    "probe_authentication",
    "probe_authentication_sync",
    "generate_report",
    "generate_report_async",
    # Reports
    "default_report_filename",
    "format_report_json",
    "report_to_dict",
    "write_csv_report",
    # MCP Server
    "mcp",
]


def get_mcp_server():
    """Get the MCP server instance (lazy import to avoid dependency if not needed)."""
    from .mcp_server import mcp

    return mcp


# Lazy import for mcp to avoid requiring fastmcp if not used
def __getattr__(name):
    if name == "mcp":
        from .mcp_server import mcp

        return mcp
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
