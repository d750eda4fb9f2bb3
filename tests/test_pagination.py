from change_platform.core.pagination import MAX_LIMIT, build_pagination, clamp_page


def test_clamp_defaults_and_caps():
    assert clamp_page(None, None) == (1, 20)
    assert clamp_page(0, -5) == (1, 20)
    assert clamp_page(3, 500) == (3, MAX_LIMIT)
    assert clamp_page(None, None, default_limit=50) == (1, 50)


def test_build_pagination():
    p = build_pagination(2, 10, 25)
    assert p == {"page": 2, "limit": 10, "total": 25, "total_pages": 3, "has_next": True, "has_prev": True}

    empty = build_pagination(1, 20, 0)
    assert empty["total_pages"] == 0
    assert empty["has_next"] is False
    assert empty["has_prev"] is False
