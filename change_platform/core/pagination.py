from __future__ import annotations

import math
from typing import Any, Dict, Optional, Tuple

DEFAULT_PAGE = 1
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def clamp_page(page: Optional[int], limit: Optional[int], default_limit: int = DEFAULT_LIMIT) -> Tuple[int, int]:
    p = page if page and page > 0 else DEFAULT_PAGE
    lim = limit if limit and limit > 0 else default_limit
    return p, min(lim, MAX_LIMIT)


def build_pagination(page: int, limit: int, total: int) -> Dict[str, Any]:
    total_pages = math.ceil(total / limit) if limit else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }
