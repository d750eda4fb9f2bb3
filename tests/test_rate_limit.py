from fastapi import FastAPI
from fastapi.testclient import TestClient

from change_platform.api.middleware.request_context import RateLimitMiddleware


def _limiter(app):
    # the stack is built on the first request; walk it down to the limiter
    node = app.middleware_stack
    while not isinstance(node, RateLimitMiddleware):
        node = node.app
    return node


def _app(enabled=True, rpm=10, trust_proxy=False):
    app = FastAPI()
    app.add_middleware(RateLimitMiddleware, enabled=enabled, rpm=rpm, trust_proxy=trust_proxy)

    @app.get("/api/v1/things")
    def things():
        return {"ok": True}

    @app.post("/api/v1/auth/login")
    def login():
        return {"ok": True}

    @app.get("/metrics")
    def metrics():
        return {"ok": True}

    return app


def test_rate_limit_per_forwarded_ip_behind_trusted_proxy():
    c = TestClient(_app(rpm=10, trust_proxy=True))
    headers = {"X-Forwarded-For": "1.2.3.4"}

    for _ in range(10):
        assert c.get("/api/v1/things", headers=headers).status_code == 200

    r = c.get("/api/v1/things", headers=headers)
    assert r.status_code == 429
    assert r.json()["error"]["code"] == "RATE_LIMITED"
    assert int(r.headers["Retry-After"]) <= 60

    # other clients have their own window
    assert c.get("/api/v1/things", headers={"X-Forwarded-For": "5.6.7.8"}).status_code == 200


def test_auth_endpoints_have_tighter_budget():
    c = TestClient(_app(rpm=10))
    codes = [c.post("/api/v1/auth/login").status_code for _ in range(6)]
    assert codes == [200] * 5 + [429]


def test_spoofed_forwarded_for_does_not_reset_the_login_budget():
    app = _app(rpm=10)
    c = TestClient(app)

    codes = [c.post("/api/v1/auth/login", headers={"X-Forwarded-For": f"10.0.0.{i}"}).status_code for i in range(20)]
    assert codes.count(429) == 15

    # one bucket for the real peer, not one per spoofed address
    assert len(_limiter(app)._counts) <= 1


def test_counts_from_past_windows_are_dropped():
    limiter = RateLimitMiddleware(FastAPI(), enabled=True, rpm=10)
    limiter._hit(("api", "1.1.1.1"), 60.0)
    limiter._hit(("api", "2.2.2.2"), 61.0)
    assert len(limiter._counts) == 2

    assert limiter._hit(("api", "1.1.1.1"), 125.0) == 1
    assert limiter._counts == {("api", "1.1.1.1"): 1}


def test_non_api_paths_and_disabled_limiter_pass_through():
    c = TestClient(_app(rpm=10))
    assert all(c.get("/metrics").status_code == 200 for _ in range(15))

    c = TestClient(_app(enabled=False, rpm=10))
    assert all(c.get("/api/v1/things").status_code == 200 for _ in range(15))
