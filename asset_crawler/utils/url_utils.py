from urllib.parse import urlparse, urlunparse, urljoin
import re

ALLOWED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}


def _clean_tracking_params(query: str) -> str:
    clean_query = re.sub(r"(?:^|(?<=&))(utm_[^=&]+|fbclid|gclid)=[^&]*", "", query, flags=re.IGNORECASE)
    clean_query = re.sub(r"&&+", "&", clean_query).strip("&")
    return clean_query


def is_http_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parsed = urlparse(url)
        return parsed.scheme.lower() in ALLOWED_SCHEMES and bool(parsed.hostname)
    except ValueError:
        return False


def resolve_reference(base_url: str, ref: str) -> str | None:
    """Resolve a raw attribute value against the page base; None if not downloadable."""
    try:
        raw_ref = ref.strip()
        if not raw_ref:
            return None
        if raw_ref.startswith("//"):
            base_scheme = urlparse(base_url).scheme or "http"
            raw_ref = f"{base_scheme}:{raw_ref}"

        url = urljoin(base_url, raw_ref)
        parsed = urlparse(url)
        if parsed.scheme.lower() not in ALLOWED_SCHEMES or not parsed.hostname:
            return None
        # fragments never reach the server
        return urlunparse(parsed._replace(fragment=""))
    except ValueError:
        return None


def normalize_url(url: str) -> str:
    """Dedup key for a resource URL.

    Scheme and host are lower-cased, default ports, fragments and tracking
    parameters dropped, repeated slashes collapsed and the trailing slash
    stripped (except for the root path).
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()

    netloc = parsed.netloc.lower()
    host, sep, port = netloc.rpartition(":")
    if sep and port.isdigit() and "]" not in port and DEFAULT_PORTS.get(scheme) == int(port):
        netloc = host

    path = parsed.path or "/"
    path = re.sub(r"/{2,}", "/", path)
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    clean_query = _clean_tracking_params(parsed.query)

    return urlunparse(
        parsed._replace(scheme=scheme, netloc=netloc, path=path, query=clean_query, fragment="")
    )

