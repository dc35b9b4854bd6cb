"""Cursor pagination with a hard page cap."""

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 10


def collect_pages(
    fetch_page: Callable[[str | None], dict[str, Any]],
    items_key: str,
    *,
    max_pages: int = DEFAULT_MAX_PAGES,
    max_items: int | None = None,
) -> tuple[list[Any], str | None]:
    """Follow ``cursor`` links until exhausted, capped or cyclic.

    Args:
        fetch_page: Called with the cursor (None for the first page) and
            returning the decoded page body.
        items_key: Key of the row list inside each page.
        max_pages: Hard cap on pages fetched.
        max_items: Optional cap on rows returned.

    Returns:
        Tuple of (rows from every fetched page, last cursor seen or None).
    """
    items: list[Any] = []
    seen: set[str] = set()
    cursor: str | None = None

    for page_number in range(max_pages):
        page = fetch_page(cursor)
        rows = page.get(items_key) if isinstance(page, dict) else None
        if isinstance(rows, list):
            items.extend(rows)

        next_cursor = page.get("cursor") if isinstance(page, dict) else None
        cursor = next_cursor if isinstance(next_cursor, str) and next_cursor else None
        if cursor is None:
            break
        if cursor in seen:
            logger.warning(
                "Cursor repeated on page %d for %s; stopping pagination",
                page_number + 1,
                items_key,
            )
            break
        seen.add(cursor)
        if max_items is not None and len(items) >= max_items:
            break
    else:
        logger.warning("Pagination for %s hit the %d page cap", items_key, max_pages)

    if max_items is not None:
        items = items[:max_items]
    return items, cursor
