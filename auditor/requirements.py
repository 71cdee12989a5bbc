"""Static catalog of Section 508 / WCAG 2.0 Level A and AA requirements.

Section 508 (E205.4) incorporates the WCAG 2.0 Level A and AA success
criteria by reference. The catalog is loaded once at import time and never
mutated; evaluators and reports look requirements up by ``id``.

Example usage:

    from auditor.requirements import REQUIREMENTS, filter_requirements

    for req in filter_requirements("operable"):
        print(req.id, req.name)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Tuple

SECTION508_REFERENCE = "E205.4 (WCAG 2.0 Level A and AA)"

# Guideline principles, keyed by the WCAG guideline prefixes they cover.
CATEGORY_PREFIXES: Dict[str, Tuple[str, ...]] = {
    "perceivable": ("1.1", "1.2", "1.3", "1.4"),
    "operable": ("2.1", "2.2", "2.3", "2.4"),
    "understandable": ("3.1", "3.2", "3.3"),
    "robust": ("4.1",),
}


@dataclass(frozen=True, slots=True)
class Requirement:
    """A single compliance requirement (one WCAG 2.0 success criterion)."""

    id: str
    name: str
    description: str
    wcag_criteria: str
    section508_reference: str = SECTION508_REFERENCE

    @property
    def axe_tag(self) -> str:
        """The axe-core rule tag for this success criterion (e.g. ``wcag111``)."""
        return "wcag" + self.id.replace(".", "")

    def to_dict(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "requirement": self.name,
            "description": self.description,
            "wcag_criteria": self.wcag_criteria,
            "section508_reference": self.section508_reference,
        }


def _criterion(criterion_id: str, name: str, description: str, level: str) -> Requirement:
    return Requirement(
        id=criterion_id,
        name=name,
        description=description,
        wcag_criteria=f"WCAG 2.0 {criterion_id} Level {level}",
    )


REQUIREMENTS: Tuple[Requirement, ...] = (
    _criterion(
        "1.1.1",
        "Non-text Content",
        "All non-text content has text alternatives",
        "A",
    ),
    _criterion(
        "1.2.1",
        "Audio-only and Video-only (Prerecorded)",
        "Alternatives for time-based media",
        "A",
    ),
    _criterion(
        "1.2.2",
        "Captions (Prerecorded)",
        "Captions for all prerecorded audio content in synchronized media",
        "A",
    ),
    _criterion(
        "1.2.3",
        "Audio Description or Media Alternative",
        "Audio description or full text alternative for prerecorded video",
        "A",
    ),
    _criterion(
        "1.2.4",
        "Captions (Live)",
        "Captions for all live audio content in synchronized media",
        "AA",
    ),
    _criterion(
        "1.2.5",
        "Audio Description (Prerecorded)",
        "Audio description for all prerecorded video content",
        "AA",
    ),
    _criterion(
        "1.3.1",
        "Info and Relationships",
        "Information and relationships can be programmatically determined",
        "A",
    ),
    _criterion(
        "1.3.2",
        "Meaningful Sequence",
        "Content can be presented in a meaningful sequence",
        "A",
    ),
    _criterion(
        "1.3.3",
        "Sensory Characteristics",
        "Instructions don't rely solely on sensory characteristics",
        "A",
    ),
    _criterion(
        "1.4.1",
        "Use of Color",
        "Color is not the only means of conveying information",
        "A",
    ),
    _criterion(
        "1.4.2",
        "Audio Control",
        "Control over audio that plays automatically",
        "A",
    ),
    _criterion(
        "1.4.3",
        "Contrast (Minimum)",
        "4.5:1 contrast ratio for normal text, 3:1 for large text",
        "AA",
    ),
    _criterion(
        "1.4.4",
        "Resize Text",
        "Text can be resized up to 200% without loss of functionality",
        "AA",
    ),
    _criterion(
        "1.4.5",
        "Images of Text",
        "Use text rather than images of text",
        "AA",
    ),
    _criterion(
        "2.1.1",
        "Keyboard",
        "All functionality available via keyboard",
        "A",
    ),
    _criterion(
        "2.1.2",
        "No Keyboard Trap",
        "No keyboard focus traps",
        "A",
    ),
    _criterion(
        "2.2.1",
        "Timing Adjustable",
        "Time limits can be adjusted or extended",
        "A",
    ),
    _criterion(
        "2.2.2",
        "Pause, Stop, Hide",
        "Control over moving, blinking, or auto-updating content",
        "A",
    ),
    _criterion(
        "2.3.1",
        "Three Flashes or Below Threshold",
        "No content flashes more than 3 times per second",
        "A",
    ),
    _criterion(
        "2.4.1",
        "Bypass Blocks",
        "Skip navigation mechanism available",
        "A",
    ),
    _criterion(
        "2.4.2",
        "Page Titled",
        "Pages have descriptive titles",
        "A",
    ),
    _criterion(
        "2.4.3",
        "Focus Order",
        "Focus order is logical and meaningful",
        "A",
    ),
    _criterion(
        "2.4.4",
        "Link Purpose (In Context)",
        "Purpose of links can be determined from context",
        "A",
    ),
    _criterion(
        "2.4.5",
        "Multiple Ways",
        "Multiple ways to locate content within a site",
        "AA",
    ),
    _criterion(
        "2.4.6",
        "Headings and Labels",
        "Headings and labels describe topic or purpose",
        "AA",
    ),
    _criterion(
        "2.4.7",
        "Focus Visible",
        "Keyboard focus indicator is visible",
        "AA",
    ),
    _criterion(
        "3.1.1",
        "Language of Page",
        "Primary language of page is programmatically determined",
        "A",
    ),
    _criterion(
        "3.1.2",
        "Language of Parts",
        "Language of passages or phrases is programmatically determined",
        "AA",
    ),
    _criterion(
        "3.2.1",
        "On Focus",
        "No unexpected context changes when component receives focus",
        "A",
    ),
    _criterion(
        "3.2.2",
        "On Input",
        "No unexpected context changes when changing input values",
        "A",
    ),
    _criterion(
        "3.2.3",
        "Consistent Navigation",
        "Navigation mechanisms are consistent",
        "AA",
    ),
    _criterion(
        "3.2.4",
        "Consistent Identification",
        "Components with same functionality are consistently identified",
        "AA",
    ),
    _criterion(
        "3.3.1",
        "Error Identification",
        "Input errors are clearly identified",
        "A",
    ),
    _criterion(
        "3.3.2",
        "Labels or Instructions",
        "Labels or instructions are provided for user input",
        "A",
    ),
    _criterion(
        "3.3.3",
        "Error Suggestion",
        "Error correction suggestions are provided",
        "AA",
    ),
    _criterion(
        "3.3.4",
        "Error Prevention (Legal, Financial, Data)",
        "Error prevention for important submissions",
        "AA",
    ),
    _criterion(
        "4.1.1",
        "Parsing",
        "Markup is properly nested and has valid attributes",
        "A",
    ),
    _criterion(
        "4.1.2",
        "Name, Role, Value",
        "Name, role, and value of UI components can be programmatically determined",
        "A",
    ),
)

REQUIREMENTS_BY_ID: Dict[str, Requirement] = {req.id: req for req in REQUIREMENTS}


def get_requirement(requirement_id: str) -> Requirement:
    """Return the catalog entry for *requirement_id*.

    Raises:
        KeyError: If the id is not part of the catalog.
    """
    return REQUIREMENTS_BY_ID[requirement_id]


def filter_requirements(category: str = "all") -> Tuple[Requirement, ...]:
    """Return the requirements belonging to a WCAG principle.

    Args:
        category: ``all`` or one of ``perceivable``, ``operable``,
            ``understandable``, ``robust`` (case-insensitive).

    Raises:
        ValueError: If the category is unknown.
    """
    key = (category or "all").strip().lower()
    if key == "all":
        return REQUIREMENTS
    prefixes = CATEGORY_PREFIXES.get(key)
    if prefixes is None:
        allowed = ", ".join(["all", *CATEGORY_PREFIXES])
        raise ValueError(f"Unknown guideline category '{category}' (expected one of: {allowed})")
    return tuple(
        req for req in REQUIREMENTS if any(req.id.startswith(p + ".") for p in prefixes)
    )
