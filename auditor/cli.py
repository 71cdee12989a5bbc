"""Command-line interface for the accessibility auditor.

Subcommands:
    audit URL        Audit a page (or crawl a site) and print or save the results
    test-auth URL    Check that a login configuration works
    guidelines       List the WCAG 2.0 requirements that are checked
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import shutil
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .cli_auth import add_auth_args, build_cli_auth
from .config import AuditSettings, load_config
from .requirements import CATEGORY_PREFIXES, filter_requirements


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _load_config() -> None:
    load_config(load_env=load_dotenv, copy_file=shutil.copy)


# =============================================================================
# ARGUMENT PARSING
# =============================================================================


def _add_crawl_args(parser: argparse.ArgumentParser) -> None:
    crawl_group = parser.add_argument_group("crawling")
    crawl_group.add_argument(
        "--crawl",
        action="store_true",
        help="Crawl the site breadth-first starting from URL",
    )
    crawl_group.add_argument(
        "--max-pages",
        type=int,
        default=10,
        help="Maximum pages to analyze when crawling (default: 10)",
    )
    crawl_group.add_argument(
        "--max-depth",
        type=int,
        default=2,
        help="Maximum link depth when crawling (default: 2, 0 = start page only)",
    )
    crawl_group.add_argument(
        "--include-path",
        action="append",
        default=None,
        help="Only follow links whose path contains this (can be repeated)",
    )
    crawl_group.add_argument(
        "--exclude-path",
        action="append",
        default=None,
        help="Skip links whose path contains this (can be repeated)",
    )
    crawl_group.add_argument(
        "--follow-external",
        action="store_true",
        help="Follow links to other origins",
    )
    crawl_group.add_argument(
        "--crawl-delay",
        type=float,
        default=0.0,
        help="Seconds to wait after each crawl navigation (default: 0)",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="section508-audit",
        description="Audit websites for Section 508 / WCAG 2.0 A and AA compliance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Single page summary
  section508-audit audit https://example.com

  # Crawl up to 5 pages and write a CSV report
  section508-audit audit https://example.com --crawl --max-pages 5 -o reports/

  # Full JSON output
  section508-audit audit https://example.com --json

  # Form login before auditing
  section508-audit audit https://app.example.com --auth-type form \\
      --username me@example.com --username-selector '#email' \\
      --password-selector '#password'

  # Check a login configuration
  section508-audit test-auth https://app.example.com --auth-config auth.json

  # List operable guidelines
  section508-audit guidelines --category operable
""",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    audit = subparsers.add_parser("audit", help="Audit a page or site")
    audit.add_argument("url", help="Start URL")
    audit.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Directory for the CSV compliance report",
    )
    audit.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Print the full report as JSON",
    )
    audit.add_argument(
        "--page-delay",
        type=float,
        default=None,
        help="Seconds to pause between page evaluations (default: AUDIT_PAGE_DELAY or 1)",
    )
    _add_crawl_args(audit)
    add_auth_args(audit)

    test_auth = subparsers.add_parser("test-auth", help="Check a login configuration")
    test_auth.add_argument("url", help="Page to log in on")
    add_auth_args(test_auth)

    guidelines = subparsers.add_parser("guidelines", help="List checked requirements")
    guidelines.add_argument(
        "--category",
        choices=["all", *CATEGORY_PREFIXES],
        default="all",
        help="WCAG principle to list (default: all)",
    )
    guidelines.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )

    for sub in (audit, test_auth, guidelines):
        sub.add_argument(
            "-v",
            "--verbose",
            action="store_true",
            help="Enable verbose logging",
        )
    return parser


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    return _build_parser().parse_args(argv)


# =============================================================================
# COMMANDS
# =============================================================================


async def _run_audit_async(args: argparse.Namespace) -> int:
    from .report import format_report_json, format_report_markdown
    from .runner import generate_report_async, run_audit
    from .site import CrawlPolicy

    auth = build_cli_auth(args)
    crawl = CrawlPolicy(
        enabled=args.crawl,
        max_pages=args.max_pages,
        max_depth=args.max_depth,
        include_paths=tuple(args.include_path or ()),
        exclude_paths=tuple(args.exclude_path or ()),
        same_origin_only=not args.follow_external,
        follow_external_links=args.follow_external,
        delay_between_pages=args.crawl_delay,
    )
    settings = AuditSettings.from_env()
    if args.page_delay is not None:
        settings = dataclasses.replace(settings, page_delay=args.page_delay)

    if args.output:
        path, report = await generate_report_async(
            args.url, args.output, auth, crawl, settings=settings
        )
        logging.info("Report written to %s", path)
    else:
        report = await run_audit(args.url, auth, crawl, settings=settings)

    if args.json_output:
        print(format_report_json(report, detailed_limit=None))
    else:
        print(format_report_markdown(report))

    if report.pages and all(page.failed for page in report.pages):
        logging.error("No page could be analyzed")
        return 1
    return 0


async def _run_test_auth_async(args: argparse.Namespace) -> int:
    from .runner import probe_authentication

    auth = build_cli_auth(args)
    if auth is None or auth.type.value == "none":
        logging.error("test-auth needs --auth-type (or AUDIT_AUTH_TYPE) other than 'none'")
        return 1

    probe = await probe_authentication(args.url, auth)
    print(
        json.dumps(
            {
                "success": probe.success,
                "auth_type": probe.auth_type.value,
                "before_auth": dataclasses.asdict(probe.before),
                "after_auth": dataclasses.asdict(probe.after),
                "error": probe.result.error,
            },
            indent=2,
            ensure_ascii=False,
        )
    )
    return 0 if probe.success else 1


def _run_guidelines(args: argparse.Namespace) -> int:
    requirements = filter_requirements(args.category)
    if args.json_output:
        print(json.dumps([req.to_dict() for req in requirements], indent=2, ensure_ascii=False))
        return 0
    for req in requirements:
        print(f"{req.id}  {req.name} ({req.wcag_criteria})")
        print(f"       {req.description}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the section508-audit command."""
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    _load_config()

    try:
        if args.command == "guidelines":
            return _run_guidelines(args)
        if args.command == "test-auth":
            return asyncio.run(_run_test_auth_async(args))
        return asyncio.run(_run_audit_async(args))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except Exception as exc:
        logging.error("Error: %s", exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return 1


if __name__ == "__main__":
    sys.exit(main())
