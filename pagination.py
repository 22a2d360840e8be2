import math


def _positive_int(value, default: int) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        return default
    return n if n > 0 else default


def page_params(args, default_limit: int = 20, max_limit: int = 100) -> tuple[int, int, int]:
    """(page, limit, skip) from query args; bad values fall back to defaults."""
    page = _positive_int(args.get("page"), 1)
    limit = min(_positive_int(args.get("limit"), default_limit), max_limit)
    return page, limit, (page - 1) * limit


def pagination(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }
