"""Serialization of audit reports: JSON payloads and the CSV compliance report."""

from __future__ import annotations

import csv
import json
import logging
import re
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlsplit

from .auth import AuthType
from .evaluator import ComplianceStatus
from .runner import AuditReport, PageResult, verdict_rows

LOGGER = logging.getLogger(__name__)

CSV_HEADERS = (
    "Page URL",
    "Page Title",
    "Requirement",
    "Description",
    "WCAG Criteria",
    "Section 508 Reference",
    "Compliance Status",
    "Issues Found",
)

DETAILED_RESULTS_LIMIT = 20


def summary_to_dict(report: AuditReport) -> Dict[str, Any]:
    summary = report.summary
    return {
        "start_url": summary.start_url,
        "pages_analyzed": summary.pages_analyzed,
        "total_requirements": summary.total_requirements,
        "authentication_used": summary.authentication_used,
        "crawling_enabled": summary.crawling_enabled,
        "comply": summary.comply,
        "do_not_comply": summary.do_not_comply,
        "partially_comply": summary.partially_comply,
        "does_not_apply": summary.does_not_apply,
        "overall_compliance_rate": summary.overall_compliance_rate,
    }


def page_to_dict(page: PageResult) -> Dict[str, Any]:
    """Per-page overview (no individual verdicts)."""
    data: Dict[str, Any] = {
        "url": page.url,
        "title": page.title,
        "crawled_at": page.crawled_at,
        "compliance_rate": page.compliance_rate,
        "issue_count": page.issue_count,
    }
    if page.errors:
        data["errors"] = list(page.errors)
    return data


def report_to_dict(report: AuditReport, *, detailed_limit: Optional[int] = DETAILED_RESULTS_LIMIT) -> dict:
    """Convert an AuditReport to a JSON-serializable dict.

    Args:
        report: The audit report.
        detailed_limit: Maximum number of page x requirement rows under
            ``detailed_results``; None keeps all of them.
    """
    rows = verdict_rows(report)
    if detailed_limit is not None:
        rows = rows[:detailed_limit]
    data: Dict[str, Any] = {
        "summary": summary_to_dict(report),
        "page_results": [page_to_dict(page) for page in report.pages],
        "detailed_results": rows,
    }
    if report.auth is not None and report.auth.auth_type is not AuthType.none:
        data["authentication"] = {
            "type": report.auth.auth_type.value,
            "attempted": report.auth.attempted,
            "succeeded": report.auth.succeeded,
            "cookies_installed": report.auth.cookies_installed,
            "error": report.auth.error,
        }
    if report.crawl_stats is not None:
        data["crawl_stats"] = asdict(report.crawl_stats)
    return data


def format_report_json(report: AuditReport, **kwargs: Any) -> str:
    return json.dumps(report_to_dict(report, **kwargs), indent=2, ensure_ascii=False)


def format_report_markdown(report: AuditReport) -> str:
    """Human-readable summary: totals, then failing requirements per page.

    Example output:
    # Accessibility audit: https://example.com
    _1 page(s), 38 checks, 79% compliant_

    ## Home (https://example.com)
    - 1.1.1 Non-text Content: Do Not Comply (2 images missing alt attributes)
    """
    summary = report.summary
    by_id = {requirement.id: requirement for requirement in report.catalog}
    lines = [
        f"# Accessibility audit: {summary.start_url}",
        f"_{summary.pages_analyzed} page(s), {summary.total_requirements} checks, "
        f"{summary.overall_compliance_rate}% compliant_",
        "",
        f"- Comply: {summary.comply}",
        f"- Do Not Comply: {summary.do_not_comply}",
        f"- Partially Comply: {summary.partially_comply}",
        f"- Does Not Apply: {summary.does_not_apply}",
        "",
    ]

    for page in report.pages:
        lines.append(f"## {page.title or page.url} ({page.url})")
        if page.errors:
            lines.append(f"**Error:** {'; '.join(page.errors)}")
            lines.append("")
            continue
        flagged = [v for v in page.verdicts if v.status is not ComplianceStatus.comply]
        if not flagged:
            lines.append("All checks passed.")
        for verdict in flagged:
            requirement = by_id[verdict.requirement_id]
            line = f"- {requirement.id} {requirement.name}: {verdict.status.value}"
            if verdict.issues:
                line += f" ({'; '.join(verdict.issues)})"
            lines.append(line)
        lines.append("")

    return "\n".join(lines)


def write_csv_report(report: AuditReport, path: Union[str, Path]) -> Path:
    """Write one CSV row per page x requirement.

    Pages that failed to load contribute no rows. Parent directories are
    created as needed.

    Returns:
        The path written.
    """
    out_path = Path(path)
    out_path.parent.mkdir(parents=True, exist_ok=True)

    rows = verdict_rows(report)
    with open(out_path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(CSV_HEADERS)
        for row in rows:
            writer.writerow(
                [
                    row["page_url"],
                    row["page_title"],
                    row["requirement"],
                    row["description"],
                    row["wcag_criteria"],
                    row["section508_reference"],
                    row["status"],
                    "; ".join(row["issues"]),
                ]
            )
    LOGGER.info("Wrote %d row(s) to %s", len(rows), out_path)
    return out_path


def default_report_filename(
    url: str,
    *,
    auth_type: AuthType = AuthType.none,
    crawled_pages: Optional[int] = None,
    now: Optional[datetime] = None,
) -> str:
    """Build ``508_compliance_<host>[_auth_<type>][_crawl_<n>pages]_<timestamp>.csv``."""
    host = re.sub(r"[^a-zA-Z0-9]", "_", urlsplit(url).hostname or "")
    moment = now or datetime.now(timezone.utc)
    timestamp = moment.strftime("%Y-%m-%dT%H-%M-%S-") + f"{moment.microsecond // 1000:03d}Z"
    auth_suffix = f"_auth_{auth_type.value}" if auth_type is not AuthType.none else ""
    crawl_suffix = f"_crawl_{crawled_pages}pages" if crawled_pages is not None else ""
    return f"508_compliance_{host}{auth_suffix}{crawl_suffix}_{timestamp}.csv"
