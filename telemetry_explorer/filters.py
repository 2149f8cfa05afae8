"""Query filter normalization for the paginated span search."""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from .errors import InvalidArgument
from .models import QueryFilters, Span

DEFAULT_FILTERS = QueryFilters()

FILTER_FIELDS = frozenset(QueryFilters.model_fields)

# Fields that fall back to their default instead of None when cleared.
_PAGING_FIELDS = ("limit", "page", "sort_by", "sort_order")


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def normalize(
    current: Optional[QueryFilters] = None,
    patch: Optional[Mapping[str, Any]] = None,
) -> QueryFilters:
    """Merge ``patch`` over ``current`` and return the canonical filter set.

    Parameters
    ----------
    current : Optional[QueryFilters]
        Filters in effect; ``DEFAULT_FILTERS`` when None.
    patch : Optional[Mapping[str, Any]]
        Fields to overwrite. ``None`` or an empty string clears a filter
        (paging fields return to their defaults).

    Returns
    -------
    QueryFilters
        Merged filters. ``page`` is reset to 1 unless the patch only
        touches ``page``.

    Raises
    ------
    InvalidArgument
        For unknown keys or values that fail validation.
    """
    current = current or DEFAULT_FILTERS
    patch = dict(patch or {})

    unknown = set(patch) - FILTER_FIELDS
    if unknown:
        raise InvalidArgument(f"Unknown filter(s): {', '.join(sorted(unknown))}")

    merged = current.model_dump()
    for key, value in patch.items():
        if _is_empty(value):
            merged[key] = getattr(DEFAULT_FILTERS, key) if key in _PAGING_FIELDS else None
        else:
            merged[key] = value.strip() if isinstance(value, str) else value

    if set(patch) - {"page"}:
        merged["page"] = 1

    try:
        return QueryFilters.model_validate(merged)
    except ValidationError as e:
        raise InvalidArgument(f"Invalid filters: {e}") from e


def with_page(current: QueryFilters, page: int) -> QueryFilters:
    """Move to another page, keeping every other filter."""
    return normalize(current, {"page": page})


def _serialize(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def to_query_params(filters: QueryFilters) -> Dict[str, str]:
    """Render filters as query string parameters, omitting empty values."""
    params: Dict[str, str] = {}
    for key, value in filters.model_dump().items():
        if _is_empty(value):
            continue
        params[key] = _serialize(value)
    return params


def active_filters(filters: QueryFilters) -> Dict[str, Any]:
    """Return only the predicates that are set (paging fields excluded)."""
    return {
        key: value
        for key, value in filters.model_dump().items()
        if key not in _PAGING_FIELDS and not _is_empty(value)
    }


def matches_search(span: Span, term: Optional[str]) -> bool:
    """Free-text match over an already-fetched span.

    Operation name and insights match case-insensitively, trace id matches
    as an exact substring. An empty term matches everything.
    """
    if not term:
        return True
    needle = term.lower()
    if needle in span.operation_name.lower():
        return True
    if term in span.trace_id:
        return True
    return bool(span.insights) and needle in span.insights.lower()


def search_spans(spans: Iterable[Span], term: Optional[str]) -> List[Span]:
    """Filter spans locally by free text, keeping order."""
    return [span for span in spans if matches_search(span, term)]
