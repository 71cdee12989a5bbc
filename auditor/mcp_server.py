"""MCP Server for Section 508 / WCAG 2.0 accessibility auditing.

Provides tools for:
- Auditing one page or a crawled website against the compliance checklist
- Writing the full result set as a CSV compliance report
- Checking that login credentials work before an audit
- Listing the WCAG 2.0 Level A/AA guidelines behind the checklist

Supports both STDIO and HTTP transports.

Usage:
    # STDIO (for Claude Desktop, etc.)
    python -m auditor.mcp_server

    # HTTP (for remote access)
    python -m auditor.mcp_server --transport http --port 8000

    # Or via FastMCP CLI
    fastmcp run auditor/mcp_server.py:mcp --transport http --port 8000

Environment Variables:
    AUDIT_HEADLESS: Run Chromium headless (default: true)
    AUDIT_PAGE_DELAY: Seconds between page evaluations (default: 1)
    AXE_CORE_PATH: Local axe.min.js instead of the CDN download
    AUDIT_REPORT_DIR: Default directory for CSV reports (default: cwd)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

from .auth import AuthConfigError, AuthType
from .axe import RuleEngineError
from .browser import BrowserLaunchError, BrowserSessionError
from .config import AuditSettings, SettingsError
from .report import report_to_dict, summary_to_dict
from .requirements import filter_requirements
from .runner import (
    InvalidURLError,
    coerce_auth,
    generate_report_async,
    probe_authentication,
    run_audit,
)
from .site import CrawlPolicyError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
LOGGER = logging.getLogger(__name__)

# Load .env before reading environment variables
load_dotenv()

# Errors that abort a whole tool call
FATAL_ERRORS = (
    InvalidURLError,
    AuthConfigError,
    CrawlPolicyError,
    SettingsError,
    BrowserLaunchError,
    BrowserSessionError,
    RuleEngineError,
    OSError,
)

# Create the MCP server
mcp = FastMCP(
    name="Section 508 Accessibility Auditor",
    instructions="""
    An accessibility auditing server that checks websites against the
    Section 508 (E205.4) checklist of WCAG 2.0 Level A and AA criteria.

    1. Audit Tools:
       - check_website_accessibility: Audit a page or crawl a site, returns a summary
       - generate_compliance_report: Same audit, written to a CSV report

    2. Helpers:
       - test_authentication: Verify login settings before auditing
       - get_accessibility_guidelines: List the checklist by WCAG principle

    Authentication types: none, basic, form, sso (microsoft, google, okta,
    saml, other). Crawling is opt-in via crawling={"enabled": true}.
    """,
)


def _error(message: str, **extra: Any) -> str:
    LOGGER.error(message)
    return json.dumps({"error": message, **extra}, ensure_ascii=False)


def _hint(crawling_enabled: bool) -> str:
    if crawling_enabled:
        return (
            "Use 'generate_compliance_report' tool to get a complete CSV report "
            "for all analyzed pages"
        )
    return "Use 'generate_compliance_report' tool to get a complete CSV report"


# =============================================================================
# AUDIT TOOLS
# =============================================================================


@mcp.tool
async def check_website_accessibility(
    url: str,
    authentication: Optional[Dict[str, Any]] = None,
    crawling: Optional[Dict[str, Any]] = None,
):
    """
    Analyze a webpage or website for Section 508 accessibility compliance.

    Args:
        url: URL of the webpage or website to analyze
        authentication: Optional login configuration
            - type: "none" (default), "basic", "form" or "sso"
            - username / password: Credentials
            - ssoProvider: "microsoft", "google", "okta", "saml" or "other"
            - ssoUrl: SSO login URL
            - usernameSelector / passwordSelector / submitSelector: CSS selectors
            - waitForSelector: Element that appears after a successful login
            - cookies: List of {"name", "value", "domain"} objects
        crawling: Optional multi-page crawling configuration
            - enabled: Enable crawling (default: false)
            - maxPages: Maximum pages to analyze (default: 10)
            - maxDepth: Maximum link depth (default: 2)
            - includePaths / excludePaths: Path substrings to include/exclude
            - sameOriginOnly: Only crawl the start URL's origin (default: true)
            - followExternalLinks: Follow links to other origins (default: false)
            - delayBetweenPages: Milliseconds to wait after each crawl navigation

    Returns:
        JSON string with the summary, per-page compliance rates, the first
        20 detailed results and a hint message.

    Examples:
        # Single page
        check_website_accessibility(url="https://example.com")

        # Crawl up to 5 pages
        check_website_accessibility(
            url="https://example.com",
            crawling={"enabled": True, "maxPages": 5},
        )
    """
    LOGGER.info("Accessibility check requested for %s", url)
    try:
        report = await run_audit(url, authentication, crawling, settings=AuditSettings.from_env())
    except FATAL_ERRORS as exc:
        return _error(f"Error analyzing webpage: {exc}", url=url)

    payload = report_to_dict(report)
    payload["message"] = _hint(report.summary.crawling_enabled)
    return json.dumps(payload, indent=2, ensure_ascii=False)


@mcp.tool
async def generate_compliance_report(
    url: str,
    output_path: Optional[str] = None,
    authentication: Optional[Dict[str, Any]] = None,
    crawling: Optional[Dict[str, Any]] = None,
):
    """
    Generate a CSV report of Section 508 compliance for a webpage or website.

    Args:
        url: URL of the webpage or website to analyze
        output_path: Directory for the CSV report (default: AUDIT_REPORT_DIR or cwd)
        authentication: Optional login configuration (see check_website_accessibility)
        crawling: Optional crawling configuration (see check_website_accessibility)

    Returns:
        JSON string with the report path and the summary.
    """
    output_dir = output_path or os.getenv("AUDIT_REPORT_DIR") or None
    LOGGER.info("Compliance report requested for %s", url)
    try:
        path, report = await generate_report_async(
            url,
            output_dir,
            authentication,
            crawling,
            settings=AuditSettings.from_env(),
        )
    except FATAL_ERRORS as exc:
        return _error(f"Error generating compliance report: {exc}", url=url)

    result = {
        "message": "Section 508 compliance report generated successfully",
        "report_path": str(path),
        "authentication_used": report.summary.authentication_used,
        "crawling_enabled": report.summary.crawling_enabled,
        "summary": summary_to_dict(report),
    }
    return json.dumps(result, indent=2, ensure_ascii=False)


# =============================================================================
# HELPER TOOLS
# =============================================================================


@mcp.tool
async def test_authentication(url: str, authentication: Dict[str, Any]):
    """
    Test an authentication configuration before running an accessibility analysis.

    Args:
        url: URL of the page to log in on
        authentication: Login configuration; type must be "basic", "form" or "sso"

    Returns:
        JSON string with success heuristic, before/after URL and title, and a message.
    """
    try:
        config = coerce_auth(authentication)
    except AuthConfigError as exc:
        return _error(f"Error testing authentication: {exc}", url=url)
    if config.type is AuthType.none:
        return _error(
            "Error testing authentication: type must be one of basic, form, sso",
            url=url,
        )

    try:
        probe = await probe_authentication(url, config, settings=AuditSettings.from_env())
    except FATAL_ERRORS as exc:
        return _error(f"Error testing authentication: {exc}", url=url)

    result = {
        "success": probe.success,
        "auth_type": probe.auth_type.value,
        "before_auth": {
            "url": probe.before.url,
            "title": probe.before.title,
            "has_login_elements": probe.before.has_keywords,
        },
        "after_auth": {
            "url": probe.after.url,
            "title": probe.after.title,
            "has_user_elements": probe.after.has_keywords,
        },
        "error": probe.result.error,
        "message": (
            "Authentication appears to have succeeded"
            if probe.success
            else "Authentication may have failed or page didn't change as expected"
        ),
    }
    return json.dumps(result, indent=2, ensure_ascii=False)


@mcp.tool
async def get_accessibility_guidelines(category: str = "all"):
    """
    List the WCAG 2.0 Level A/AA requirements checked by the auditor.

    Args:
        category: "all" (default), "perceivable", "operable", "understandable" or "robust"

    Returns:
        JSON string with the category, the requirement count and the requirements.
    """
    try:
        requirements = filter_requirements(category)
    except ValueError as exc:
        return _error(str(exc), category=category)

    result = {
        "category": category,
        "total_requirements": len(requirements),
        "requirements": [req.to_dict() for req in requirements],
    }
    return json.dumps(result, indent=2, ensure_ascii=False)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the Section 508 accessibility auditor MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    AUDIT_HEADLESS     Run Chromium headless (default: true)
    AUDIT_PAGE_DELAY   Seconds between page evaluations (default: 1)
    AXE_CORE_PATH      Local axe.min.js instead of the CDN download
    AUDIT_REPORT_DIR   Default directory for CSV reports

Examples:
    # STDIO transport (default, for Claude Desktop)
    python -m auditor.mcp_server

    # HTTP transport (for remote access)
    python -m auditor.mcp_server --transport http --port 8000

    # Custom host/port
    python -m auditor.mcp_server --transport http --host 0.0.0.0 --port 9000
""",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )

    args = parser.parse_args()

    settings = AuditSettings.from_env()
    LOGGER.info("Headless browser: %s", "Enabled" if settings.headless else "Disabled")
    LOGGER.info("axe-core source: %s", settings.axe_core_path or settings.axe_core_url)

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
