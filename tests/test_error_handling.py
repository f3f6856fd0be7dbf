import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from tokengate.api.error_handling import register_exception_handlers
from tokengate.service.errors import (
    InsufficientScope,
    InvalidCredentials,
    NotFoundError,
    StoreUnavailable,
    TokenExpired,
)
from tokengate.storage.errors import ConstraintViolation


class Payload(BaseModel):
    count: int


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/credentials")
    async def credentials():
        raise InvalidCredentials()

    @app.get("/expired")
    async def expired():
        raise TokenExpired()

    @app.get("/scope")
    async def scope():
        raise InsufficientScope("write:b")

    @app.get("/missing")
    async def missing():
        raise NotFoundError("user not found", detail={"user_id": 9})

    @app.get("/conflict")
    async def conflict():
        raise ConstraintViolation("email already exists", {"field": "email"})

    @app.get("/store")
    async def store():
        raise StoreUnavailable("resolve_token timed out after 3.0s")

    @app.get("/boom")
    async def boom():
        raise RuntimeError("secret internals")

    @app.post("/payload")
    async def payload(body: Payload):
        return {"error": False, "message": str(body.count)}

    return TestClient(app, raise_server_exceptions=False)


def test_authentication_errors_are_prefixed(client):
    response = client.get("/credentials")

    assert response.status_code == 401
    assert response.json() == {"error": True, "message": "Unauthorised: invalid credentials"}
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_token_failures_do_not_reveal_reason(client):
    response = client.get("/expired")
    assert response.json()["message"] == "Unauthorised: invalid or expired token"


def test_insufficient_scope_names_capability(client):
    response = client.get("/scope")

    assert response.status_code == 401
    assert response.json()["message"] == "Unauthorised: insufficient scope: write:b"


def test_not_found(client):
    response = client.get("/missing")
    assert response.status_code == 404
    assert response.json() == {"error": True, "message": "user not found"}


def test_constraint_violation_is_conflict(client):
    response = client.get("/conflict")
    assert response.status_code == 409
    assert response.json()["message"] == "email already exists"


def test_server_errors_are_generic(client):
    for path in ("/store", "/boom"):
        response = client.get(path)
        assert response.status_code == 500
        assert response.json() == {"error": True, "message": "something went wrong"}


def test_request_validation_is_bad_request(client):
    response = client.post("/payload", json={"count": "many"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] is True
    assert body["message"].startswith("count")
