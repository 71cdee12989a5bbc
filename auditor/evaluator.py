"""Per-page compliance evaluation.

For one loaded page, ``evaluate_page`` runs the automated rule engine and the
heuristic markup checks and returns exactly one ``PageVerdict`` per catalog
requirement, in catalog order.

Requirement-specific checks are registered with ``@rule_check("<id>")``.
Requirements without a registered check fall back to the automated-engine
lookup by the requirement's axe tag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup, Tag

from .axe import AxeResults, run_axe
from .browser import BrowserSession
from .requirements import REQUIREMENTS, Requirement

LOGGER = logging.getLogger(__name__)


class ComplianceStatus(str, Enum):
    """Verdict for one requirement on one page."""

    comply = "Comply"
    does_not_comply = "Do Not Comply"
    partially_comply = "Partially Comply"
    not_applicable = "Does Not Apply"


@dataclass(frozen=True)
class PageVerdict:
    requirement_id: str
    status: ComplianceStatus
    issues: Tuple[str, ...] = ()


@dataclass
class PageContext:
    """Everything a rule check may inspect for the current page."""

    soup: BeautifulSoup
    axe: AxeResults


@dataclass
class Finding:
    """Mutable working verdict while checks run for one requirement."""

    status: ComplianceStatus = ComplianceStatus.comply
    issues: List[str] = field(default_factory=list)

    def fail(self, status: ComplianceStatus, issue: str) -> None:
        self.status = status
        self.issues.append(issue)


RuleCheck = Callable[[Requirement, PageContext, Finding], None]
RuleEngine = Callable[[BrowserSession], Awaitable[AxeResults]]

RULE_CHECKS: Dict[str, RuleCheck] = {}


def rule_check(requirement_id: str) -> Callable[[RuleCheck], RuleCheck]:
    """Register *func* as the specific check for *requirement_id*."""

    def decorator(func: RuleCheck) -> RuleCheck:
        RULE_CHECKS[requirement_id] = func
        return func

    return decorator


@rule_check("1.1.1")
def check_non_text_content(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    missing = len(page.soup.select("img:not([alt])"))
    if missing > 0:
        finding.fail(ComplianceStatus.does_not_comply, f"{missing} images missing alt attributes")


@rule_check("1.4.3")
def check_contrast_minimum(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    violations = page.axe.with_id("color-contrast")
    if violations:
        finding.fail(
            ComplianceStatus.does_not_comply,
            f"{len(violations)} color contrast violations found",
        )


@rule_check("2.4.2")
def check_page_titled(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    title_tag = page.soup.find("title")
    title = title_tag.get_text().strip() if title_tag else ""
    if not title:
        finding.fail(ComplianceStatus.does_not_comply, "Page missing title element")
    elif len(title) < 3:
        finding.fail(ComplianceStatus.partially_comply, "Page title is too short to be descriptive")


@rule_check("3.1.1")
def check_language_of_page(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    html = page.soup.find("html")
    if not isinstance(html, Tag) or not html.get("lang"):
        finding.fail(ComplianceStatus.does_not_comply, "HTML element missing lang attribute")


def _tabindex(element: Tag) -> Optional[int]:
    try:
        return int(str(element.get("tabindex", "")).strip())
    except ValueError:
        return None


@rule_check("2.1.1")
def check_keyboard(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    indexed = page.soup.select("[tabindex]")
    negative = sum(1 for element in indexed if (_tabindex(element) or 0) < 0)
    if negative > len(indexed) * 0.5:
        finding.fail(
            ComplianceStatus.partially_comply,
            "Many elements have negative tabindex, may affect keyboard navigation",
        )


@rule_check("1.3.1")
def check_info_and_relationships(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    h1_count = len(page.soup.find_all("h1"))
    if h1_count == 0:
        finding.fail(ComplianceStatus.partially_comply, "No H1 heading found on page")
    elif h1_count > 1:
        finding.fail(
            ComplianceStatus.partially_comply,
            "Multiple H1 headings found, should have only one",
        )


@rule_check("2.4.1")
def check_bypass_blocks(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    skip_links = [
        anchor
        for anchor in page.soup.select('a[href^="#"]')
        if "skip" in anchor.get_text().lower()
    ]
    if not skip_links:
        finding.fail(ComplianceStatus.does_not_comply, "No skip navigation links found")


_UNLABELLED_EXEMPT_TYPES = {"hidden", "submit", "button"}


def _has_label(element: Tag, soup: BeautifulSoup) -> bool:
    if element.get("aria-label") or element.get("aria-labelledby"):
        return True
    element_id = element.get("id")
    if element_id and soup.find("label", attrs={"for": element_id}):
        return True
    return element.find_parent("label") is not None


@rule_check("3.3.2")
def check_labels_or_instructions(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    unlabelled = 0
    for element in page.soup.find_all("input"):
        input_type = str(element.get("type") or "text").lower()
        if input_type in _UNLABELLED_EXEMPT_TYPES:
            continue
        if not _has_label(element, page.soup):
            unlabelled += 1
    if unlabelled > 0:
        finding.fail(ComplianceStatus.does_not_comply, f"{unlabelled} form inputs missing labels")


def check_automated(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    """Fallback: any axe violation tagged with the requirement's criterion fails it."""
    violations = page.axe.tagged(requirement.axe_tag)
    if violations:
        finding.fail(
            ComplianceStatus.does_not_comply,
            f"{len(violations)} violations detected by automated testing",
        )


def _related_sweep(requirement: Requirement, page: PageContext, finding: Finding) -> None:
    if finding.status is not ComplianceStatus.comply or finding.issues:
        return
    if page.axe.tagged(requirement.axe_tag):
        finding.fail(
            ComplianceStatus.partially_comply,
            "Some related issues detected by automated testing",
        )


def judge_page(
    html: str,
    axe: AxeResults,
    catalog: Sequence[Requirement] = REQUIREMENTS,
) -> List[PageVerdict]:
    """Apply every rule check to already collected page data."""
    page = PageContext(soup=BeautifulSoup(html or "", "html.parser"), axe=axe)
    verdicts: List[PageVerdict] = []
    for requirement in catalog:
        finding = Finding()
        check = RULE_CHECKS.get(requirement.id, check_automated)
        check(requirement, page, finding)
        _related_sweep(requirement, page, finding)
        verdicts.append(
            PageVerdict(
                requirement_id=requirement.id,
                status=finding.status,
                issues=tuple(finding.issues),
            )
        )
    return verdicts


async def evaluate_page(
    session: BrowserSession,
    url: str,
    catalog: Sequence[Requirement] = REQUIREMENTS,
    *,
    rule_engine: Optional[RuleEngine] = None,
) -> List[PageVerdict]:
    """Evaluate the page currently loaded in *session*.

    Args:
        session: Session already navigated to *url*.
        url: Page URL (for logging).
        catalog: Requirements to judge, in output order.
        rule_engine: Coroutine returning axe results; defaults to ``run_axe``.

    Returns:
        One PageVerdict per requirement in *catalog*.

    Raises:
        RuleEngineError: If the automated rule engine fails.
        BrowserSessionError: If the page markup cannot be read.
    """
    engine = rule_engine or run_axe
    axe = await engine(session)
    html = await session.content()
    verdicts = judge_page(html, axe, catalog)
    failing = sum(1 for v in verdicts if v.status is not ComplianceStatus.comply)
    LOGGER.debug("Evaluated %s: %d/%d requirement(s) flagged", url, failing, len(verdicts))
    return verdicts
