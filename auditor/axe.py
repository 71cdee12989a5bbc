"""axe-core integration: loading the script and running it in a page.

axe-core is treated as an opaque violation detector. The audit only reads
each violation's ``id`` and ``tags``; the remaining fields are kept for
reporting.

The script is resolved in this order:
1. ``AXE_CORE_PATH`` (a local ``axe.min.js``)
2. a cached download in ``AXE_CACHE_DIR``
3. a fresh download from ``AXE_CORE_URL`` (cached for next time)
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .browser import BrowserSession, BrowserSessionError
from .config import AuditSettings

LOGGER = logging.getLogger(__name__)

_AXE_RUN_SCRIPT = """
async () => {
    if (!window.axe || !window.axe.run) {
        throw new Error('axe-core is not loaded');
    }
    const results = await window.axe.run(document, {
        runOnly: { type: 'tag', values: ['wcag2a', 'wcag2aa', 'section508'] },
    });
    return {
        violations: results.violations.map((v) => ({
            id: v.id,
            tags: v.tags,
            impact: v.impact,
            help: v.help,
            nodes: v.nodes.length,
        })),
    };
}
"""

_SOURCE_CACHE: Dict[str, str] = {}


class RuleEngineError(RuntimeError):
    """Raised when axe-core cannot be loaded or run against a page."""


@dataclass(frozen=True)
class AxeViolation:
    """One failed axe-core rule on the current page."""

    id: str
    tags: Tuple[str, ...] = ()
    impact: Optional[str] = None
    help: str = ""
    node_count: int = 0

    @classmethod
    def from_raw(cls, raw: Dict[str, Any]) -> "AxeViolation":
        nodes = raw.get("nodes", 0)
        return cls(
            id=str(raw.get("id", "")),
            tags=tuple(str(tag) for tag in raw.get("tags") or ()),
            impact=raw.get("impact"),
            help=str(raw.get("help") or ""),
            node_count=len(nodes) if isinstance(nodes, list) else int(nodes or 0),
        )


@dataclass
class AxeResults:
    violations: List[AxeViolation] = field(default_factory=list)

    def tagged(self, tag: str) -> List[AxeViolation]:
        return [v for v in self.violations if tag in v.tags]

    def with_id(self, rule_id: str) -> List[AxeViolation]:
        return [v for v in self.violations if v.id == rule_id]


def _cache_path(settings: AuditSettings) -> Path:
    digest = hashlib.sha256(settings.axe_core_url.encode("utf-8")).hexdigest()[:12]
    return settings.axe_cache_dir / f"axe-{digest}.min.js"


def load_axe_source(settings: Optional[AuditSettings] = None) -> str:
    """Return the axe-core JavaScript source.

    Raises:
        RuleEngineError: If the configured file is missing or the download fails.
    """
    settings = settings or AuditSettings.from_env()

    if settings.axe_core_path:
        path = Path(settings.axe_core_path).expanduser()
        if not path.is_file():
            raise RuleEngineError(f"AXE_CORE_PATH does not point to a file: {path}")
        return path.read_text(encoding="utf-8")

    key = settings.axe_core_url
    if key in _SOURCE_CACHE:
        return _SOURCE_CACHE[key]

    cached = _cache_path(settings)
    if cached.is_file():
        source = cached.read_text(encoding="utf-8")
        _SOURCE_CACHE[key] = source
        return source

    LOGGER.info("Downloading axe-core from %s", settings.axe_core_url)
    try:
        response = httpx.get(settings.axe_core_url, timeout=30.0, follow_redirects=True)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise RuleEngineError(
            f"axe-core download failed: HTTP {exc.response.status_code}"
        ) from exc
    except httpx.RequestError as exc:
        raise RuleEngineError(f"axe-core download failed: {exc}") from exc

    source = response.text
    try:
        cached.parent.mkdir(parents=True, exist_ok=True)
        cached.write_text(source, encoding="utf-8")
        LOGGER.debug("Cached axe-core at %s", cached)
    except OSError as exc:
        LOGGER.warning("Could not cache axe-core at %s: %s", cached, exc)
    _SOURCE_CACHE[key] = source
    return source


async def run_axe(session: BrowserSession, settings: Optional[AuditSettings] = None) -> AxeResults:
    """Inject axe-core into the current document and collect its violations.

    Raises:
        RuleEngineError: If the script cannot be loaded, injected or run.
    """
    source = load_axe_source(settings)
    try:
        await session.add_script(source)
        raw = await session.evaluate(_AXE_RUN_SCRIPT)
    except BrowserSessionError as exc:
        raise RuleEngineError(f"axe-core run failed: {exc}") from exc

    if not isinstance(raw, dict) or not isinstance(raw.get("violations"), list):
        raise RuleEngineError("axe-core returned an unexpected result")

    violations = [AxeViolation.from_raw(item) for item in raw["violations"]]
    LOGGER.debug("axe-core reported %d violation(s)", len(violations))
    return AxeResults(violations=violations)
