from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from dreamjournal.app.middleware.request_id import RequestIdMiddleware
from dreamjournal.app.middleware.request_size import RequestSizeLimitMiddleware
from dreamjournal.app.middleware.security_headers import SecurityHeadersMiddleware


def test_request_size_middleware_does_not_mask_exceptions():
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=1024)

    @app.post("/boom")
    async def boom(_: Request):
        raise RuntimeError("boom")

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.post("/boom", json={"x": 1})

    assert resp.status_code == 500


def test_request_size_middleware_returns_json_413_on_oversize_body():
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=10)

    @app.post("/echo")
    async def echo(req: Request):
        return {"size": len(await req.body())}

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.post("/echo", content=b"x" * 11)

    assert resp.status_code == 413
    assert resp.headers.get("content-type", "").startswith("application/json")
    assert resp.json()["error"] == "Request too large"
    assert "10 bytes" in resp.json()["message"]


def test_request_size_middleware_limits_streamed_body():
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=10)

    @app.post("/echo")
    async def echo(req: Request):
        return {"size": len(await req.body())}

    def chunks():
        yield b"x" * 8
        yield b"x" * 8

    client = TestClient(app, raise_server_exceptions=False)
    resp = client.post("/echo", content=chunks())

    assert resp.status_code == 413


def test_request_size_middleware_allows_small_body():
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=1024)

    @app.post("/echo")
    async def echo(req: Request):
        return {"size": len(await req.body())}

    resp = TestClient(app).post("/echo", content=b"x" * 11)
    assert resp.json() == {"size": 11}


def test_security_headers_do_not_override_route_headers():
    app = FastAPI()
    app.add_middleware(SecurityHeadersMiddleware)

    @app.get("/framed")
    async def framed():
        from fastapi.responses import JSONResponse
        return JSONResponse({}, headers={"X-Frame-Options": "SAMEORIGIN"})

    resp = TestClient(app).get("/framed")

    assert resp.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-XSS-Protection"] == "1; mode=block"


def test_request_id_generated_and_stored():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/id")
    async def get_id(request: Request):
        return {"request_id": request.state.request_id}

    resp = TestClient(app).get("/id")

    assert resp.headers["X-Request-ID"] == resp.json()["request_id"]
    assert len(resp.headers["X-Request-ID"]) == 36


def test_oversized_request_id_is_replaced():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/id")
    async def get_id(request: Request):
        return {"request_id": request.state.request_id}

    resp = TestClient(app).get("/id", headers={"X-Request-ID": "x" * 500})
    assert resp.json()["request_id"] != "x" * 500
