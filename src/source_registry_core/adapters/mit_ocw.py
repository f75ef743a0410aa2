from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import Any

from bs4 import BeautifulSoup, Tag

from source_registry_core.adapters.base import SourceAdapter, TocBuilder, clean_text, slugify
from source_registry_core.models import (
    AssetCandidate,
    NodeType,
    SelectorHints,
    TocNode,
    ValidationResult,
)

OCW_BASE_URL = "https://ocw.mit.edu"

NAV_SELECTORS = (
    'nav[aria-label="Course materials"]',
    ".course-nav",
    ".course-sidebar nav",
    "#course-nav",
    ".left-nav",
    "aside nav",
)

_SECTION_KEYWORDS = (
    "syllabus",
    "calendar",
    "lecture",
    "assignment",
    "problem set",
    "pset",
    "reading",
    "exam",
    "quiz",
    "project",
)
_EXPANDABLE_KEYWORDS = ("lecture", "assignment", "reading")


@dataclass(frozen=True)
class CuratedCourse:
    course_number: str
    title: str
    url: str
    department: str
    topics: tuple[str, ...]
    level: str

    @property
    def slug(self) -> str:
        return self.course_number.lower().replace(".", "-")


_EECS = "Electrical Engineering and Computer Science"

CURATED_COURSES: tuple[CuratedCourse, ...] = (
    CuratedCourse(
        "6.0001",
        "Introduction to Computer Science and Programming in Python",
        "https://ocw.mit.edu/courses/6-0001-introduction-to-computer-science-and-programming-in-python-fall-2016/",
        _EECS,
        ("python", "programming", "computer science", "algorithms", "data structures"),
        "Undergraduate",
    ),
    CuratedCourse(
        "6.092",
        "Introduction to Programming in Java",
        "https://ocw.mit.edu/courses/6-092-introduction-to-programming-in-java-january-iap-2010/",
        _EECS,
        ("java", "programming", "oop", "object-oriented"),
        "Undergraduate",
    ),
    CuratedCourse(
        "6.006",
        "Introduction to Algorithms",
        "https://ocw.mit.edu/courses/6-006-introduction-to-algorithms-spring-2020/",
        _EECS,
        ("algorithms", "data structures", "computer science", "complexity"),
        "Undergraduate",
    ),
    CuratedCourse(
        "18.01",
        "Single Variable Calculus",
        "https://ocw.mit.edu/courses/18-01sc-single-variable-calculus-fall-2010/",
        "Mathematics",
        ("calculus", "mathematics", "derivatives", "integrals"),
        "Undergraduate",
    ),
    CuratedCourse(
        "18.02",
        "Multivariable Calculus",
        "https://ocw.mit.edu/courses/18-02sc-multivariable-calculus-fall-2010/",
        "Mathematics",
        ("calculus", "mathematics", "vectors", "multivariable"),
        "Undergraduate",
    ),
    CuratedCourse(
        "18.06",
        "Linear Algebra",
        "https://ocw.mit.edu/courses/18-06sc-linear-algebra-fall-2011/",
        "Mathematics",
        ("linear algebra", "mathematics", "matrices", "vectors"),
        "Undergraduate",
    ),
    CuratedCourse(
        "6.046J",
        "Design and Analysis of Algorithms",
        "https://ocw.mit.edu/courses/6-046j-design-and-analysis-of-algorithms-spring-2015/",
        _EECS,
        ("algorithms", "analysis", "design", "complexity"),
        "Graduate",
    ),
    CuratedCourse(
        "6.042J",
        "Mathematics for Computer Science",
        "https://ocw.mit.edu/courses/6-042j-mathematics-for-computer-science-fall-2010/",
        _EECS,
        ("discrete mathematics", "logic", "proofs", "computer science"),
        "Undergraduate",
    ),
    CuratedCourse(
        "14.01",
        "Principles of Microeconomics",
        "https://ocw.mit.edu/courses/14-01sc-principles-of-microeconomics-fall-2011/",
        "Economics",
        ("economics", "microeconomics", "markets", "supply", "demand"),
        "Undergraduate",
    ),
    CuratedCourse(
        "8.01",
        "Physics I: Classical Mechanics",
        "https://ocw.mit.edu/courses/8-01sc-classical-mechanics-fall-2016/",
        "Physics",
        ("physics", "mechanics", "motion", "forces", "energy"),
        "Undergraduate",
    ),
)


def determine_node_type(title: str, depth: int) -> NodeType:
    lower = title.lower()
    if any(k in lower for k in _SECTION_KEYWORDS):
        return "section"
    if depth == 0:
        return "chapter"
    if depth == 1:
        return "section"
    return "subsection"


def _absolute(href: str, page_url: str) -> str:
    if not href or href.startswith("http"):
        return href
    if href.startswith("/"):
        return f"{OCW_BASE_URL}{href}"
    return f"{page_url.rstrip('/')}/{href}"


def should_expand(title: str, url: str | None) -> bool:
    lower = title.lower()
    return any(k in lower for k in _EXPANDABLE_KEYWORDS) and "/pages/" in (url or "")


class MitOcwAdapter(SourceAdapter):
    """MIT OpenCourseWare courses from a curated catalog."""

    source_type = "mit_ocw"

    def __init__(self, *args: Any, courses: tuple[CuratedCourse, ...] = CURATED_COURSES, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.courses = courses

    async def discover_assets(
        self, seed_url: str, config: dict[str, Any] | None = None
    ) -> list[AssetCandidate]:
        self.log("info", "discover", "Discovering MIT OCW courses from curated list")
        assets = [
            AssetCandidate(
                slug=course.slug,
                title=course.title,
                url=course.url,
                description=f"MIT OpenCourseWare - {course.course_number}: {course.title}",
                metadata={
                    "courseNumber": course.course_number,
                    "department": course.department,
                    "level": course.level,
                    "topics": list(course.topics),
                },
            )
            for course in self.courses
        ]
        self.log("info", "discover", f"Discovered {len(assets)} MIT OCW courses")
        return assets

    async def validate(self, candidate: AssetCandidate, base_url: str) -> ValidationResult:
        result = await super().validate(candidate, base_url)
        if not result.license_name or (result.license_confidence or 0) < 0.7:
            result = replace(
                result,
                license_name="CC BY-NC-SA 4.0",
                license_url="https://creativecommons.org/licenses/by-nc-sa/4.0/",
                license_confidence=0.85,
            )
        return result

    async def map_toc(self, candidate: AssetCandidate, base_url: str) -> list[TocNode]:
        self.log("info", "map_toc", f"Mapping TOC for {candidate.title}")
        result = await self.fetcher.fetch(candidate.url)
        if not result.ok or not result.html:
            self.log("error", "map_toc", f"Failed to fetch course page: {result.error}")
            return []
        soup = BeautifulSoup(result.html, "html.parser")
        toc = TocBuilder()

        nav = next((n for n in (soup.select_one(s) for s in NAV_SELECTORS) if n is not None), None)
        top_list = nav.find(["ul", "ol"]) if nav is not None else None
        if top_list is not None:
            entries: list[tuple[str, str, int]] = []
            self._collect_nav(top_list, candidate.url, 0, entries)
            for title, url, depth in entries:
                toc.add(
                    title=title,
                    url=url,
                    node_type=determine_node_type(title, depth),
                    depth=depth,
                    slug=slugify(f"{candidate.slug}-{title}-{len(toc)}"),
                )
                if should_expand(title, url):
                    await self._expand_index_page(toc, candidate.slug, title, url, depth)
        else:
            self.log("debug", "map_toc", "No nav found, attempting to extract from page structure")
            sections = soup.select(".course-section, .course-page, section[data-course-section]")
            for i, section in enumerate(sections):
                heading = section.select_one("h1, h2, h3")
                title = (clean_text(heading.get_text()) if heading else "") or f"Section {i + 1}"
                toc.add(
                    title=title,
                    url=candidate.url,
                    node_type="section",
                    depth=0,
                    slug=slugify(f"{candidate.slug}-{title}-{len(toc)}"),
                )
            if not toc.nodes:
                toc.add(
                    title=candidate.title,
                    url=candidate.url,
                    node_type="page",
                    depth=0,
                    slug=candidate.slug,
                )

        self.log("info", "map_toc", f"Mapped {len(toc)} TOC nodes for {candidate.title}")
        return toc.nodes

    def _collect_nav(
        self, lst: Tag, page_url: str, depth: int, out: list[tuple[str, str, int]]
    ) -> None:
        for item in lst.find_all("li", recursive=False):
            link = item.find("a")
            if link is None:
                continue
            title = clean_text(link.get_text())
            if not title:
                continue
            url = _absolute(str(link.get("href") or ""), page_url) or page_url
            out.append((title, url, depth))
            nested = item.find(["ul", "ol"])
            if nested is not None:
                self._collect_nav(nested, page_url, depth + 1, out)

    async def _expand_index_page(
        self, toc: TocBuilder, asset_slug: str, parent_title: str, index_url: str, depth: int
    ) -> int:
        """Adds one child per table row of a lecture/assignment/reading index page."""
        result = await self.fetcher.fetch(index_url)
        if not result.ok or not result.html:
            self.log("warn", "map_toc", f"Failed to fetch index page: {index_url}")
            return 0
        soup = BeautifulSoup(result.html, "html.parser")
        added = 0
        for row in soup.select("table tr")[1:]:
            cells = row.find_all("td")
            if len(cells) < 2:
                continue
            title = clean_text(cells[0].get_text())
            topic = clean_text(cells[1].get_text())
            if len(topic) > len(title):
                title = topic
            if not title:
                continue
            content_url = index_url
            for link in row.select("a[href]"):
                href = str(link.get("href") or "")
                if href.endswith(".pdf") or "/resources/" in href:
                    if href.startswith("http") or href.startswith("/"):
                        content_url = _absolute(href, index_url)
                    else:
                        content_url = re.sub(r"/[^/]*$", "", index_url) + f"/{href}"
            toc.add(
                title=f"{parent_title}: {title}",
                url=content_url,
                node_type="section",
                depth=depth + 1,
                slug=slugify(f"{asset_slug}-{title}-{added}"),
                metadata={"parent_title": parent_title, "is_pdf": content_url.endswith(".pdf")},
            )
            added += 1
        self.log("debug", "map_toc", f"Expanded {parent_title!r} into {added} child nodes")
        return added

    def selector_hints(self) -> SelectorHints:
        return SelectorHints(
            content=".course-content, main, article, .main-content, #content",
            title="h1, .course-title, .page-title",
            toc="nav, .course-nav, .left-nav, aside",
            license=".license, .cc-license, footer .license",
        )
