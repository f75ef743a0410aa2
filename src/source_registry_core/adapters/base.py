from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from source_registry_core.fetcher import Fetcher
from source_registry_core.logging import RegistryLogger
from source_registry_core.models import (
    AssetCandidate,
    NodeType,
    RobotsStatus,
    SelectorHints,
    SourceType,
    TocNode,
    ValidationIssue,
    ValidationResult,
)


class AdapterError(RuntimeError):
    pass


@dataclass(frozen=True)
class LicenseInfo:
    confidence: float = 0.0
    name: str | None = None
    url: str | None = None


def _cc_full_name(m: re.Match[str]) -> str:
    return "CC " + re.sub(r"(?i)creative commons ", "", m.group(0))


def _gpl_name(m: re.Match[str]) -> str:
    return f"GPL v{m.group(1)}" if m.group(1) else "GPL"


_LICENSE_PATTERNS: list[tuple[re.Pattern[str], Any, float]] = [
    (
        re.compile(
            r"Creative Commons Attribution(?:-NonCommercial)?(?:-ShareAlike)?(?:-NoDerivatives)? (\d+\.\d+)",
            re.I,
        ),
        _cc_full_name,
        0.9,
    ),
    (re.compile(r"CC BY(-NC)?(-SA)?(-ND)? (\d+\.\d+)", re.I), lambda m: m.group(0).upper(), 0.95),
    (re.compile(r"MIT License", re.I), lambda m: "MIT License", 0.95),
    (re.compile(r"Apache License,? Version (\d+\.\d+)", re.I), lambda m: f"Apache {m.group(1)}", 0.95),
    (re.compile(r"GNU (?:General Public License|GPL)(?: v)?(\d+)?", re.I), _gpl_name, 0.9),
    (re.compile(r"BSD (\d)-Clause License", re.I), lambda m: f"BSD {m.group(1)}-Clause", 0.95),
    (re.compile(r"Public Domain", re.I), lambda m: "Public Domain", 0.8),
]

_CC_LINK_RE = re.compile(r"licenses/(by(?:-nc)?(?:-sa)?(?:-nd)?)/([\d.]+)", re.I)


def detect_license(html: str) -> LicenseInfo:
    soup = BeautifulSoup(html, "html.parser")
    body = soup.body or soup
    text = body.get_text(" ")
    for regex, name, confidence in _LICENSE_PATTERNS:
        m = regex.search(text)
        if m:
            return LicenseInfo(name=name(m), confidence=confidence)

    link = soup.select_one('a[href*="creativecommons.org/licenses"]')
    if link is not None:
        href = str(link.get("href") or "")
        m = _CC_LINK_RE.search(href)
        if m:
            return LicenseInfo(name=f"CC {m.group(1).upper()} {m.group(2)}", url=href, confidence=0.95)

    meta = soup.select_one('meta[name="license"], meta[property="dc:license"], meta[name="dc.rights"]')
    if meta is not None and meta.get("content"):
        return LicenseInfo(name=str(meta["content"]), confidence=0.7)
    return LicenseInfo()


def slugify(text: str) -> str:
    slug = re.sub(r"[^\w\s-]", "", text.lower().strip())
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def resolve_url(relative: str, base: str) -> str:
    try:
        return urljoin(base, relative)
    except ValueError:
        return relative


def clean_text(text: str | None) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


class TocBuilder:
    """Collects nodes in pre-order, numbering `sort_order` as they arrive."""

    def __init__(self) -> None:
        self.nodes: list[TocNode] = []

    def add(
        self,
        *,
        title: str,
        url: str | None,
        node_type: NodeType,
        depth: int,
        slug: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TocNode:
        node = TocNode(
            title=title,
            url=url,
            node_type=node_type,
            depth=depth,
            sort_order=len(self.nodes),
            slug=slug,
            metadata=metadata or {},
        )
        self.nodes.append(node)
        return node

    def __len__(self) -> int:
        return len(self.nodes)


class SourceAdapter(ABC):
    """
    One site's conventions for enumerating assets and mapping their tables of contents.
    """

    source_type: SourceType

    def __init__(self, fetcher: Fetcher, *, logger: RegistryLogger | None = None):
        self.fetcher = fetcher
        self._log = logger or RegistryLogger()

    @abstractmethod
    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]: ...

    @abstractmethod
    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]: ...

    def selector_hints(self) -> SelectorHints | None:
        return None

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        robots_status: RobotsStatus = "unknown"
        license_info = LicenseInfo()

        try:
            robots = await self.fetcher.check_robots(candidate.url)
            robots_status = robots.status  # type: ignore[assignment]
            if robots.status == "unknown":
                warnings.append(
                    ValidationIssue(
                        code="ROBOTS_UNKNOWN",
                        message="robots.txt could not be read; permission is unknown",
                    )
                )
        except Exception as e:  # noqa: BLE001
            robots_status = "needs_review"
            warnings.append(
                ValidationIssue(
                    code="ROBOTS_CHECK_FAILED",
                    message=f"Could not check robots.txt: {e}",
                )
            )

        try:
            result = await self.fetcher.fetch(candidate.url)
            if result.ok and result.html:
                license_info = detect_license(result.html)
                if not license_info.name:
                    warnings.append(
                        ValidationIssue(
                            code="LICENSE_NOT_DETECTED",
                            message="Could not automatically detect license information",
                        )
                    )
            else:
                errors.append(
                    ValidationIssue(
                        code="FETCH_FAILED",
                        message=f"Failed to fetch asset page: {result.error}",
                        details={"status": result.status},
                    )
                )
        except Exception as e:  # noqa: BLE001
            errors.append(ValidationIssue(code="FETCH_ERROR", message=f"Error fetching asset: {e}"))

        return ValidationResult(
            robots_status=robots_status,
            license_name=license_info.name,
            license_url=license_info.url,
            license_confidence=license_info.confidence,
            errors=errors,
            warnings=warnings,
        )

    def log(self, level: str, action: str, message: str, **extra: Any) -> None:
        self._log.log(level, action, f"[{self.source_type}] {message}", **extra)  # type: ignore[arg-type]


def node_type_for_depth(depth: int) -> NodeType:
    if depth == 0:
        return "chapter"
    if depth == 1:
        return "section"
    return "subsection"
