import math

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def pagination_params(page: int = None, limit: int = None):
    page = max(1, page or 1)
    limit = min(MAX_LIMIT, max(1, limit or DEFAULT_LIMIT))
    return page, limit


def paginate(query, page: int, limit: int):
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, total


def pagination_meta(total: int, page: int, limit: int) -> dict:
    total_pages = math.ceil(total / limit)
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": total_pages,
        "hasNext": page < total_pages,
        "hasPrev": page > 1,
    }
