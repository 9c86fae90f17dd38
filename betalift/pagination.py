"""
Paging helpers shared by the membership and feedback list operations.

Listing functions hand an ordered ``select()`` to ``paginate`` and get back a
Flask-SQLAlchemy ``Pagination``; API handlers serialize it with
``pagination_to_dict``.
"""
from flask import current_app, has_app_context
from flask_sqlalchemy.pagination import Pagination

from betalift.models import db


def _page_size_limits() -> tuple[int, int]:
    if not has_app_context():
        return 20, 100
    return (
        int(current_app.config.get("DEFAULT_PAGE_SIZE", 20)),
        int(current_app.config.get("MAX_PAGE_SIZE", 100)),
    )


def clamp_page_params(page, per_page) -> tuple[int, int]:
    """Coerce page/per_page to sane ints, capped at MAX_PAGE_SIZE."""
    default_size, max_size = _page_size_limits()

    try:
        page = max(int(page or 1), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        per_page = int(per_page or default_size)
    except (TypeError, ValueError):
        per_page = default_size
    return page, min(max(per_page, 1), max_size)


def paginate(query, page=1, per_page=None) -> Pagination:
    """
    Paginate an ordered select statement.

    Out-of-range pages return an empty page instead of a 404.
    """
    page, per_page = clamp_page_params(page, per_page)
    return db.paginate(
        query,
        page=page,
        per_page=per_page,
        max_per_page=_page_size_limits()[1],
        error_out=False,
    )


def pagination_to_dict(pagination: Pagination, serialize=None) -> dict:
    serialize = serialize or (lambda item: item.to_dict())
    return {
        "items": [serialize(item) for item in pagination.items],
        "total": pagination.total,
        "page": pagination.page,
        "per_page": pagination.per_page,
        "pages": pagination.pages,
        "has_next": pagination.has_next,
    }
