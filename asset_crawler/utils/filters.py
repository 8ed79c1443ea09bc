import os
import re
from urllib.parse import urlparse

from asset_crawler.models import ResourceKind

# references that never point at a downloadable file
SKIPPED_PREFIXES = ("#", "data:", "javascript:", "mailto:", "tel:", "blob:", "about:")

FONT_EXTENSIONS = {".woff", ".woff2", ".ttf", ".otf", ".eot"}
MEDIA_EXTENSIONS = {
    ".mp4", ".webm", ".mp3", ".ogg", ".ogv", ".oga", ".wav", ".m4a", ".m4v", ".mkv", ".mov", ".flac", ".vtt",
}
STYLE_EXTENSIONS = {".css"}
HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}

PRELOAD_AS_KINDS = {
    "font": ResourceKind.FONT,
    "style": ResourceKind.STYLE,
    "image": ResourceKind.IMAGE,
    "script": ResourceKind.SCRIPT,
    "audio": ResourceKind.MEDIA,
    "video": ResourceKind.MEDIA,
    "track": ResourceKind.MEDIA,
}


def is_candidate_reference(value: str | None) -> bool:
    """Quick pre-check on a raw attribute value before URL resolution."""
    if not value:
        return False
    value = value.strip()
    if not value:
        return False
    return not re.match(r"^(?:%s)" % "|".join(re.escape(p) for p in SKIPPED_PREFIXES), value, re.I)


def url_extension(url: str) -> str:
    return os.path.splitext(urlparse(url).path)[1].lower()


def kind_for_css_reference(url: str) -> ResourceKind:
    """Kind of a ``url(...)`` target found in CSS, guessed from its extension."""
    ext = url_extension(url)
    if ext in FONT_EXTENSIONS:
        return ResourceKind.FONT
    if ext in MEDIA_EXTENSIONS:
        return ResourceKind.MEDIA
    if ext in STYLE_EXTENSIONS:
        return ResourceKind.STYLE
    return ResourceKind.IMAGE


def is_html_content_type(content_type: str | None) -> bool:
    """True for HTML media types and for a missing Content-Type."""
    if not content_type:
        return True
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type in HTML_CONTENT_TYPES
