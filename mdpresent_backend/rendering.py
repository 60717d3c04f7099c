"""Markdown -> slide HTML.

Pipeline: python-markdown (raw HTML allowed, heading anchors via ``toc``),
then BeautifulSoup passes for the h1-h3 table of contents and for the custom
``<md-row>/<md-col>`` slide column layout. Export wraps the result into the page
template.
"""
from __future__ import annotations

import html as html_module
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import markdown
from bs4 import BeautifulSoup
from bs4.element import Tag
from markdown.extensions.toc import slugify_unicode

logger = logging.getLogger(__name__)

TOC_LEVELS = ("h1", "h2", "h3")

# <col> is a void element to HTML parsers, so columns use the md- prefixed tag.
ROW_TAGS = ("row", "md-row")
COL_TAGS = ("md-col",)
LAYOUT_TAGS = ROW_TAGS + COL_TAGS

# Layout tags without an explicit markdown attribute get their body parsed as blocks.
_LAYOUT_OPEN_RE = re.compile(
    r"<(" + "|".join(LAYOUT_TAGS) + r")\b(?![^>]*\bmarkdown=)([^>]*)>",
    re.IGNORECASE,
)

BODY_CLASS_HTML = "export-mode"
BODY_CLASS_PDF = "export-mode pdf-export-mode"


@dataclass(frozen=True)
class TocEntry:
    level: int
    slug: str
    title: str


@dataclass(frozen=True)
class RenderResult:
    content_html: str
    toc: list[TocEntry]

    @property
    def toc_html(self) -> str:
        return generate_toc_html(self.toc)


def _new_markdown() -> markdown.Markdown:
    md = markdown.Markdown(
        extensions=["extra", "sane_lists", "toc"],
        extension_configs={
            "toc": {"slugify": slugify_unicode},
        },
    )
    # Rows and columns are blocks, so md_in_html (part of extra) keeps their
    # content together across blank lines.
    md.block_level_elements.extend(LAYOUT_TAGS)
    return md


def _mark_layout_blocks(md_text: str) -> str:
    return _LAYOUT_OPEN_RE.sub(r'<\1 markdown="1"\2>', md_text)


def _merge_class_list(existing: object, add: Iterable[str]) -> list[str]:
    current: list[str] = []
    if isinstance(existing, list):
        current = [str(x) for x in existing if str(x).strip()]
    elif isinstance(existing, str):
        current = [p for p in existing.split() if p.strip()]

    for c in add:
        c = str(c).strip()
        if c and c not in current:
            current.append(c)
    return current


def transform_layout_rows(soup: BeautifulSoup) -> int:
    """Turn ``<md-row><md-col>..</md-col></md-row>`` slide columns into flex divs in place.

    Only direct ``<md-col>`` children count; ``<md-col width="30%">`` pins that
    column's width. Returns the number of rows converted.
    """
    transformed = 0
    for row in [r for r in soup.find_all(ROW_TAGS) if isinstance(r, Tag)]:
        cols = [c for c in row.find_all(COL_TAGS, recursive=False) if isinstance(c, Tag)]
        if not cols:
            continue

        row_div = soup.new_tag("div")
        row_div["class"] = _merge_class_list(row.get("class"), ["slide-row"])

        for col in cols:
            col_div = soup.new_tag("div")
            col_div["class"] = _merge_class_list(col.get("class"), ["slide-col"])
            width = str(col.get("width") or "").strip()
            if width:
                col_div["style"] = f"flex: 0 0 {width}; max-width: {width};"
            for child in list(col.contents):
                col_div.append(child.extract())
            row_div.append(col_div)

        row.replace_with(row_div)
        transformed += 1
    return transformed


def extract_toc(soup: BeautifulSoup) -> list[TocEntry]:
    entries: list[TocEntry] = []
    for heading in soup.find_all(TOC_LEVELS):
        slug = heading.get("id")
        if not slug:
            continue
        entries.append(TocEntry(level=int(heading.name[1]), slug=str(slug), title=heading.get_text().strip()))
    return entries


def generate_toc_html(toc: list[TocEntry]) -> str:
    items = "".join(
        f'<li class="toc-level-{entry.level}"><a href="#{html_module.escape(entry.slug, quote=True)}">'
        f"{html_module.escape(entry.title)}</a></li>"
        for entry in toc
    )
    return f"<ul>{items}</ul>"


def render_markdown(md_text: str) -> RenderResult:
    raw_html = _new_markdown().convert(_mark_layout_blocks(md_text or ""))
    soup = BeautifulSoup(raw_html, "html.parser")
    rows = transform_layout_rows(soup)
    toc = extract_toc(soup)
    logger.debug("Rendered %d chars: %d toc entries, %d layout rows", len(md_text or ""), len(toc), rows)
    return RenderResult(content_html=str(soup), toc=toc)


def load_template(path: Path) -> str:
    return Path(path).read_text(encoding="utf-8")


def fill_template(template: str, content_html: str = "", toc_html: str = "") -> str:
    return template.replace("{{TOC_HTML}}", toc_html, 1).replace("{{CONTENT}}", content_html, 1)


def build_export_html(template: str, md_text: str, body_class: str, flag: str) -> str:
    """Render ``md_text`` into ``template`` as a static, non-interactive page.

    ``flag`` is the window variable set to true so the page script skips
    live reload and client-side re-rendering.
    """
    result = render_markdown(md_text)
    page = fill_template(template, result.content_html, result.toc_html)
    page = page.replace("<body>", f'<body class="{body_class}">', 1)
    return page.replace("</body>", f"<script>window.{flag}=true;</script></body>", 1)
