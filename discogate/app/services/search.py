"""Query normalization for Discogs database searches."""

from typing import Any, Dict, Optional

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100
DEFAULT_PAGE = 1

# At least one of these must be present for a search to be meaningful.
REQUIRED_ANY = ("q", "artist", "title", "barcode")
OPTIONAL_FIELDS = ("q", "type", "artist", "title", "barcode", "year", "format", "country")


def _parse_int(raw: Any) -> Optional[int]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def clamp_per_page(raw: Any) -> int:
    """Clamp ``per_page`` to [1, 100]; unparseable or missing values give 20."""
    parsed = _parse_int(raw)
    if parsed is None:
        return DEFAULT_PER_PAGE
    return max(1, min(MAX_PER_PAGE, parsed))


def clamp_page(raw: Any) -> int:
    """Return ``page`` if it is an integer >= 1, otherwise 1."""
    parsed = _parse_int(raw)
    if parsed is None or parsed < 1:
        return DEFAULT_PAGE
    return parsed


def has_search_term(raw: Dict[str, Any]) -> bool:
    """True if a search field carries something besides whitespace."""
    return any(str(raw.get(field) or "").strip() for field in REQUIRED_ANY)


def build_search_params(raw: Dict[str, Any]) -> Dict[str, str]:
    """Normalize inbound search parameters for the upstream query string.

    Empty or missing optional fields are left out entirely rather than sent
    as empty strings, which Discogs rejects.

    Example:
        >>> build_search_params({"q": "Blue Train", "per_page": "500", "year": ""})
        {'per_page': '100', 'page': '1', 'q': 'Blue Train'}
    """
    params: Dict[str, str] = {
        "per_page": str(clamp_per_page(raw.get("per_page"))),
        "page": str(clamp_page(raw.get("page"))),
    }
    for field in OPTIONAL_FIELDS:
        value = raw.get(field)
        if isinstance(value, str) and value.strip():
            params[field] = value.strip()
    return params
