from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Tuple, Union
from urllib.parse import urljoin

from bs4 import BeautifulSoup
from bs4.element import Tag

from asset_crawler.models import ResourceKind
from asset_crawler.utils.filters import (
    PRELOAD_AS_KINDS,
    is_candidate_reference,
    kind_for_css_reference,
)
from asset_crawler.utils.url_utils import resolve_reference

CSS_URL_RE = re.compile(r"url\(\s*([\"']?)([^)\"']+)\1\s*\)", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(
    r"@import\s+(?:url\()?\s*([\"']?)([^\)\"';\s]+)\1\s*\)?[^;]*;",
    re.IGNORECASE,
)
SRCSET_SPLIT_RE = re.compile(r"\s*,\s*")
WS_RE = re.compile(r"\s+")

ICON_RELS = {"icon", "shortcut", "apple-touch-icon", "apple-touch-icon-precomposed", "mask-icon"}
PRELOAD_RELS = {"preload", "prefetch"}

RawReference = Tuple[str, ResourceKind]


@dataclass(frozen=True)
class ResourceRef:
    url: str
    kind: ResourceKind


@dataclass
class Extraction:
    """
    Result of scanning one page.

    ``resources`` holds one entry per resolved absolute URL, in document
    order. ``duplicates`` holds every later reference that resolved to a URL
    already in ``resources``.
    """
    resources: List[ResourceRef] = field(default_factory=list)
    duplicates: List[ResourceRef] = field(default_factory=list)

    @property
    def discovered(self) -> int:
        return len(self.resources) + len(self.duplicates)


def parse_html(html: Union[bytes, str]) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag is not None and is_candidate_reference(tag.get("href")):
        return urljoin(fallback, tag["href"].strip())
    return fallback


def parse_srcset(value: str) -> List[str]:
    urls: List[str] = []
    if not value:
        return urls
    for candidate in SRCSET_SPLIT_RE.split(value.strip()):
        if not candidate:
            continue
        parts = WS_RE.split(candidate.strip())
        if parts and parts[0]:
            urls.append(parts[0])
    return urls


def parse_css_references(text: str, *, allow_imports: bool = True) -> List[RawReference]:
    """``@import`` targets (style) followed by ``url(...)`` targets, kind guessed by extension."""
    refs: List[RawReference] = []
    if not text:
        return refs

    if allow_imports:
        for match in CSS_IMPORT_RE.finditer(text):
            refs.append((match.group(2).strip(), ResourceKind.STYLE))
        # an @import url(...) must not be counted a second time as url()
        text = CSS_IMPORT_RE.sub("", text)

    for match in CSS_URL_RE.finditer(text):
        raw = match.group(2).strip()
        refs.append((raw, kind_for_css_reference(raw)))
    return refs


def _attr(tag: Tag, name: str) -> str:
    value = tag.get(name)
    if isinstance(value, list):
        return " ".join(value)
    return value or ""


def _link_references(tag: Tag) -> Iterator[RawReference]:
    href = _attr(tag, "href")
    rels = {r.lower() for r in _attr(tag, "rel").split()}
    if "stylesheet" in rels:
        yield href, ResourceKind.STYLE
    elif rels & ICON_RELS:
        yield href, ResourceKind.IMAGE
    elif "modulepreload" in rels:
        yield href, ResourceKind.SCRIPT
    elif rels & PRELOAD_RELS:
        kind = PRELOAD_AS_KINDS.get(_attr(tag, "as").lower())
        if kind is not None:
            yield href, kind


def _tag_references(tag: Tag) -> Iterator[RawReference]:
    name = tag.name
    if name == "img":
        yield _attr(tag, "src"), ResourceKind.IMAGE
        for url in parse_srcset(_attr(tag, "srcset")):
            yield url, ResourceKind.IMAGE
    elif name == "source":
        parent = tag.parent.name if tag.parent is not None else ""
        kind = ResourceKind.MEDIA if parent in ("video", "audio") else ResourceKind.IMAGE
        yield _attr(tag, "src"), kind
        for url in parse_srcset(_attr(tag, "srcset")):
            yield url, kind
    elif name == "input" and _attr(tag, "type").lower() == "image":
        yield _attr(tag, "src"), ResourceKind.IMAGE
    elif name == "video":
        yield _attr(tag, "src"), ResourceKind.MEDIA
        yield _attr(tag, "poster"), ResourceKind.IMAGE
    elif name in ("audio", "track", "embed"):
        yield _attr(tag, "src"), ResourceKind.MEDIA
    elif name == "script":
        yield _attr(tag, "src"), ResourceKind.SCRIPT
    elif name == "link":
        yield from _link_references(tag)
    elif name == "style":
        yield from parse_css_references(tag.string or tag.get_text())

    inline_style = _attr(tag, "style")
    if inline_style:
        yield from parse_css_references(inline_style, allow_imports=False)


def iter_raw_references(soup: BeautifulSoup) -> Iterator[RawReference]:
    """Every resource-bearing attribute value in document order, unresolved."""
    for tag in soup.find_all(True):
        for raw, kind in _tag_references(tag):
            if is_candidate_reference(raw):
                yield raw, kind


def extract_resources(html: Union[bytes, str], base_url: str) -> Extraction:
    """Resolve every resource reference of a page against its base URL."""
    soup = parse_html(html)
    base = effective_base_url(soup, base_url)

    extraction = Extraction()
    seen: set[str] = set()
    for raw, kind in iter_raw_references(soup):
        url = resolve_reference(base, raw)
        if url is None:
            continue
        ref = ResourceRef(url=url, kind=kind)
        if url in seen:
            extraction.duplicates.append(ref)
            continue
        seen.add(url)
        extraction.resources.append(ref)
    return extraction
