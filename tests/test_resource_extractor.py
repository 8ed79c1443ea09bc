import pytest

from asset_crawler.models import ResourceKind
from asset_crawler.parsing.resource_extractor import (
    ResourceRef,
    extract_resources,
    parse_css_references,
    parse_srcset,
)

BASE = "https://example.com/blog/post.html"


def _pairs(extraction):
    return [(ref.url, ref.kind) for ref in extraction.resources]


def test_extract_resources_finds_each_resource_type():
    html = b"""
    <html><head>
      <link rel="stylesheet" href="/css/site.css">
      <link rel="icon" href="/favicon.ico">
      <link rel="preload" as="font" href="/fonts/inter.woff2" crossorigin>
      <link rel="preload" as="fetch" href="/api/data.json">
      <link rel="canonical" href="/blog/post.html">
      <script src="js/app.js"></script>
      <script>var inline = 1;</script>
    </head><body>
      <img src="img/hero.png" srcset="img/hero-2x.png 2x, img/hero-3x.png 3x">
      <video src="/media/clip.mp4" poster="/img/poster.jpg">
        <track src="/media/subs.vtt">
      </video>
      <audio><source src="/media/theme.ogg"></audio>
      <a href="/about">not a resource</a>
    </body></html>
    """

    extraction = extract_resources(html, BASE)

    assert _pairs(extraction) == [
        ("https://example.com/css/site.css", ResourceKind.STYLE),
        ("https://example.com/favicon.ico", ResourceKind.IMAGE),
        ("https://example.com/fonts/inter.woff2", ResourceKind.FONT),
        ("https://example.com/blog/js/app.js", ResourceKind.SCRIPT),
        ("https://example.com/blog/img/hero.png", ResourceKind.IMAGE),
        ("https://example.com/blog/img/hero-2x.png", ResourceKind.IMAGE),
        ("https://example.com/blog/img/hero-3x.png", ResourceKind.IMAGE),
        ("https://example.com/media/clip.mp4", ResourceKind.MEDIA),
        ("https://example.com/img/poster.jpg", ResourceKind.IMAGE),
        ("https://example.com/media/subs.vtt", ResourceKind.MEDIA),
        ("https://example.com/media/theme.ogg", ResourceKind.MEDIA),
    ]
    assert extraction.duplicates == []


def test_extract_resources_reads_inline_style_blocks_and_attributes():
    html = """
    <style>
      @import url("/css/print.css") print;
      @font-face { src: url('/fonts/a.woff2') format('woff2'); }
      body { background: url(img/bg.jpg) no-repeat; }
      .logo { background-image: url("data:image/png;base64,AAAA"); }
    </style>
    <div style="background: url('/img/banner.webp')"></div>
    """

    extraction = extract_resources(html, BASE)

    assert _pairs(extraction) == [
        ("https://example.com/css/print.css", ResourceKind.STYLE),
        ("https://example.com/fonts/a.woff2", ResourceKind.FONT),
        ("https://example.com/blog/img/bg.jpg", ResourceKind.IMAGE),
        ("https://example.com/img/banner.webp", ResourceKind.IMAGE),
    ]


@pytest.mark.parametrize(
    "src,expected",
    [
        ("/a.png", "https://example.com/a.png"),
        ("//cdn.example.net/a.png", "https://cdn.example.net/a.png"),
        ("http://other.org/a.png", "http://other.org/a.png"),
        ("data:image/gif;base64,R0lGOD", None),
        ("javascript:void(0)", None),
        ("", None),
    ],
)
def test_extract_resources_resolution_and_skips(src, expected):
    extraction = extract_resources(f"<img src='{src}'>", BASE)

    if expected is None:
        assert extraction.resources == []
        assert extraction.discovered == 0
    else:
        assert extraction.resources == [ResourceRef(expected, ResourceKind.IMAGE)]


def test_extract_resources_honours_base_href():
    html = "<head><base href='https://static.example.org/v2/'></head><img src='logo.svg'>"

    extraction = extract_resources(html, BASE)

    assert _pairs(extraction) == [("https://static.example.org/v2/logo.svg", ResourceKind.IMAGE)]


def test_extract_resources_collapses_same_url_within_page():
    html = """
    <img src="/shared.png">
    <div style="background:url(/shared.png)"></div>
    <img src="https://example.com/shared.png#frag">
    """

    extraction = extract_resources(html, BASE)

    assert _pairs(extraction) == [("https://example.com/shared.png", ResourceKind.IMAGE)]
    assert len(extraction.duplicates) == 2
    assert extraction.discovered == 3


def test_source_inside_picture_is_image_and_inside_video_is_media():
    html = """
    <picture><source srcset="/p.avif 1x, /p@2x.avif 2x"><img src="/p.jpg"></picture>
    <video><source src="/v.webm"></video>
    """

    extraction = extract_resources(html, BASE)

    assert _pairs(extraction) == [
        ("https://example.com/p.avif", ResourceKind.IMAGE),
        ("https://example.com/p@2x.avif", ResourceKind.IMAGE),
        ("https://example.com/p.jpg", ResourceKind.IMAGE),
        ("https://example.com/v.webm", ResourceKind.MEDIA),
    ]


def test_parse_srcset_and_css_helpers():
    assert parse_srcset("a.png 1x, b.png 2x,c.png 480w") == ["a.png", "b.png", "c.png"]
    assert parse_srcset("") == []

    refs = parse_css_references("@import 'base.css'; div{background:url(x.gif)}")
    assert refs == [("base.css", ResourceKind.STYLE), ("x.gif", ResourceKind.IMAGE)]

    inline = parse_css_references("@import 'base.css';", allow_imports=False)
    assert inline == []
