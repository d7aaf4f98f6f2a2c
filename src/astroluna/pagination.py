from django.conf import settings


def max_page_size() -> int:
    rf = getattr(settings, 'REST_FRAMEWORK', {}) or {}
    try:
        return int(rf.get('PAGE_SIZE', 100))
    except (TypeError, ValueError):
        return 100


def limit_offset(request, default_limit: int = 20):
    """Read `limit` / `offset` query params, clamped to [1, PAGE_SIZE] and >= 0."""
    cap = max_page_size()
    try:
        limit = int(request.query_params.get('limit', default_limit))
    except (TypeError, ValueError):
        limit = default_limit
    if limit <= 0:
        limit = default_limit
    limit = min(limit, cap)

    try:
        offset = int(request.query_params.get('offset', 0))
    except (TypeError, ValueError):
        offset = 0
    return limit, max(0, offset)
