"""Section store: locate, read, replace, and insert ``## `` sections in markdown.

Pure text transforms over a heading-delimited document. Every function takes
the current markdown and returns a new string; nothing is cached, so section
offsets are always recomputed from the text that is passed in.

Matching rules for a headline:

1. exact byte match of the heading line (``## <headline>``),
2. case-insensitive match,
3. case-insensitive match after collapsing internal whitespace.

The first rule that finds a heading wins.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SOURCES_HEADING = "sources"

_H2_LINE_RE = re.compile(r"^## (.*)$", re.MULTILINE)
_NEXT_H2_RE = re.compile(r"^## ", re.MULTILINE)
_SOURCES_RE = re.compile(r"^##\s+Sources\s*$", re.MULTILINE | re.IGNORECASE)


@dataclass(frozen=True)
class Section:
    """One H2 section: heading text (without ``## ``) and trimmed body."""
    heading: str
    content: str


@dataclass(frozen=True)
class SectionSpan:
    """Byte offsets of a section inside a markdown string.

    ``heading_start`` points at the ``##`` marker, ``start`` at the first
    character after the heading line, ``end`` at the next H2 heading (or the
    end of the document).
    """
    heading_start: int
    start: int
    end: int
    heading_line: str


# ---------------------------------------------------------------------------
# Heading helpers
# ---------------------------------------------------------------------------


def normalize_heading(heading: str) -> str:
    """Lower-case and collapse whitespace for loose heading comparison."""
    return re.sub(r"\s+", " ", heading.strip()).lower()


def is_sources_heading(heading: str) -> bool:
    return normalize_heading(heading) == SOURCES_HEADING


def parse_sections(markdown: str) -> list[Section]:
    """Split markdown into H2 sections in document order.

    Only lines that start with ``## `` open a section; text before the first
    H2 heading is ignored. Content is trimmed.
    """
    sections: list[Section] = []
    heading: str | None = None
    body: list[str] = []

    for line in markdown.split("\n"):
        if line.startswith("## "):
            if heading is not None:
                sections.append(Section(heading=heading, content="\n".join(body).strip()))
            heading = line[3:].strip()
            body = []
        elif heading is not None:
            body.append(line)

    if heading is not None:
        sections.append(Section(heading=heading, content="\n".join(body).strip()))
    return sections


def content_sections(markdown: str) -> list[Section]:
    """All sections except the Sources section."""
    return [s for s in parse_sections(markdown) if not is_sources_heading(s.heading)]


def list_headings(markdown: str) -> list[str]:
    return [s.heading for s in parse_sections(markdown)]


def strip_sources_section(markdown: str) -> str:
    """Drop the Sources section and everything after it."""
    m = _SOURCES_RE.search(markdown)
    if m is None:
        return markdown
    return markdown[: m.start()].rstrip()


# ---------------------------------------------------------------------------
# Locate
# ---------------------------------------------------------------------------


def _match_heading(markdown: str, headline: str) -> re.Match[str] | None:
    escaped = re.escape(headline.strip())
    exact = re.compile(rf"^## {escaped}[ \t]*$", re.MULTILINE)
    m = exact.search(markdown)
    if m is not None:
        return m

    loose = re.compile(rf"^## [ \t]*{escaped}[ \t]*$", re.MULTILINE | re.IGNORECASE)
    m = loose.search(markdown)
    if m is not None:
        return m

    wanted = normalize_heading(headline)
    for candidate in _H2_LINE_RE.finditer(markdown):
        if normalize_heading(candidate.group(1)) == wanted:
            return candidate
    return None


def find_section(markdown: str, headline: str) -> SectionSpan | None:
    """Locate the section titled *headline*; ``None`` when absent."""
    if not headline or not headline.strip():
        return None
    m = _match_heading(markdown, headline)
    if m is None:
        return None

    start = m.end()
    if start < len(markdown) and markdown[start] == "\n":
        start += 1

    nxt = _NEXT_H2_RE.search(markdown, start)
    end = nxt.start() if nxt is not None else len(markdown)
    return SectionSpan(heading_start=m.start(), start=start, end=end, heading_line=m.group(0))


def get_section_content(markdown: str, headline: str) -> str | None:
    """Trimmed body of the section, or ``None`` if it does not exist."""
    span = find_section(markdown, headline)
    if span is None:
        return None
    return markdown[span.start:span.end].strip()


# ---------------------------------------------------------------------------
# Mutate
# ---------------------------------------------------------------------------


def _format_body(content: str, *, at_end: bool) -> str:
    body = content.strip()
    if not body:
        return "\n" if not at_end else ""
    # One blank line after the heading, one after the body. The final
    # section of a document ends with a single newline instead.
    return f"\n{body}\n" if at_end else f"\n{body}\n\n"


def replace_section(markdown: str, headline: str, new_content: str) -> str | None:
    """Swap the body of *headline* for *new_content*.

    The heading line is kept verbatim. Returns ``None`` when the section is
    not found so callers can fall back to another strategy.
    """
    span = find_section(markdown, headline)
    if span is None:
        return None

    before = markdown[:span.start]
    if not before.endswith("\n"):
        before += "\n"
    after = markdown[span.end:]
    return before + _format_body(new_content, at_end=not after) + after


def _join_at(markdown: str, index: int, block: str) -> str:
    prefix = markdown[:index]
    suffix = markdown[index:]
    if prefix.strip():
        prefix = prefix.rstrip("\n") + "\n\n"
    else:
        prefix = ""
    if not suffix:
        block = block.rstrip("\n") + "\n"
    return prefix + block + suffix


def insert_section(
    markdown: str,
    after_headline: str | None,
    new_headline: str,
    new_content: str,
) -> str:
    """Insert a new ``## new_headline`` section.

    With ``after_headline=None`` the section goes right before the Sources
    heading, or at the end when there is no Sources section. With an anchor,
    it goes right after that section's body; a missing anchor falls back to
    the ``None`` behaviour.
    """
    body = new_content.strip()
    block = f"## {new_headline.strip()}\n\n{body}\n\n" if body else f"## {new_headline.strip()}\n\n"

    if after_headline is not None:
        span = find_section(markdown, after_headline)
        if span is not None:
            return _join_at(markdown, span.end, block)
        logger.debug("Anchor section %r not found, inserting before Sources", after_headline)

    sources = _SOURCES_RE.search(markdown)
    if sources is not None:
        return _join_at(markdown, sources.start(), block)
    return _join_at(markdown, len(markdown), block)
