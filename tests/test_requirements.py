"""Tests for the requirement catalog."""

from __future__ import annotations

import pytest

from auditor.requirements import (
    REQUIREMENTS,
    REQUIREMENTS_BY_ID,
    SECTION508_REFERENCE,
    filter_requirements,
    get_requirement,
)


class TestCatalog:
    def test_has_all_level_a_and_aa_criteria(self):
        assert len(REQUIREMENTS) == 38
        assert REQUIREMENTS[0].id == "1.1.1"
        assert REQUIREMENTS[-1].id == "4.1.2"

    def test_ids_are_unique(self):
        ids = [req.id for req in REQUIREMENTS]
        assert len(ids) == len(set(ids))
        assert set(ids) == set(REQUIREMENTS_BY_ID)

    def test_entries_reference_section_508(self):
        for req in REQUIREMENTS:
            assert req.section508_reference == SECTION508_REFERENCE
            assert req.wcag_criteria.startswith(f"WCAG 2.0 {req.id} Level ")

    def test_get_requirement(self):
        assert get_requirement("2.4.2").name == "Page Titled"
        assert get_requirement("3.1.1").name == "Language of Page"

    def test_get_requirement_unknown(self):
        with pytest.raises(KeyError):
            get_requirement("9.9.9")

    def test_axe_tag(self):
        assert get_requirement("1.4.3").axe_tag == "wcag143"
        assert get_requirement("4.1.2").axe_tag == "wcag412"

    def test_to_dict(self):
        data = get_requirement("1.1.1").to_dict()
        assert data == {
            "id": "1.1.1",
            "requirement": "Non-text Content",
            "description": "All non-text content has text alternatives",
            "wcag_criteria": "WCAG 2.0 1.1.1 Level A",
            "section508_reference": SECTION508_REFERENCE,
        }

    def test_requirements_are_immutable(self):
        with pytest.raises(AttributeError):
            REQUIREMENTS[0].name = "changed"  # type: ignore[misc]


class TestFilterRequirements:
    @pytest.mark.parametrize(
        "category,prefix,count",
        [
            ("perceivable", "1.", 14),
            ("operable", "2.", 12),
            ("understandable", "3.", 10),
            ("robust", "4.", 2),
        ],
    )
    def test_categories(self, category, prefix, count):
        selected = filter_requirements(category)
        assert len(selected) == count
        assert all(req.id.startswith(prefix) for req in selected)

    def test_all(self):
        assert filter_requirements("all") == REQUIREMENTS
        assert filter_requirements() == REQUIREMENTS

    def test_case_insensitive(self):
        assert filter_requirements("Robust") == filter_requirements("robust")

    def test_unknown_category(self):
        with pytest.raises(ValueError, match="Unknown guideline category"):
            filter_requirements("visual")
