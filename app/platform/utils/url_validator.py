from typing import Tuple
from urllib.parse import urlparse


def normalize_url(url: str) -> Tuple[str, bool]:
    url = url.strip()

    parsed = urlparse(url)

    if not parsed.scheme:
        normalized = f"https://{url}"
        return normalized, True

    return url, False


def validate_url(url: str) -> Tuple[bool, str, str]:
    if not url or not url.strip():
        return False, "", "URL cannot be empty"

    normalized_url, was_modified = normalize_url(url)

    try:
        parsed = urlparse(normalized_url)

        if not parsed.netloc or not parsed.hostname:
            return False, normalized_url, "Invalid URL format: missing domain"

        if parsed.scheme not in ['http', 'https']:
            return False, normalized_url, f"Invalid URL scheme: {parsed.scheme} (must be http or https)"

        return True, normalized_url, ""

    except ValueError as e:
        return False, normalized_url, f"URL parsing error: {str(e)}"


def canonical_origin(url: str) -> str:
    """scheme://host[:port] in lowercase, without path, query or trailing slash."""
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    port = parsed.port
    default_port = {"http": 80, "https": 443}.get(parsed.scheme.lower())
    netloc = host if port in (None, default_port) else f"{host}:{port}"
    return f"{parsed.scheme.lower()}://{netloc}"
