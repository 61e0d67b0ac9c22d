import base64
import hashlib
import itertools
import os
import re
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

os.environ.setdefault("MONGODB_DB_NAME", "remixhub_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ.setdefault("MERCADOPAGO_ACCESS_TOKEN", "TEST-access-token")
os.environ.setdefault("MERCADOPAGO_WEBHOOK_SECRET", "")
os.environ.setdefault("REPO_INIT_WAIT_SECONDS", "0")
os.environ.setdefault("HTTP_RETRY_BACKOFF_SECONDS", "0")


def _sha(data: str) -> str:
    return hashlib.sha1(data.encode()).hexdigest()


def b64(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


class FakeGitHub:
    """In-memory stand-in for the GitHub REST endpoints the copier uses."""

    def __init__(self, login: str = "dest-user"):
        self.login = login
        self.repos: dict[str, dict] = {}
        self.blobs: dict[str, str] = {}
        self.trees: dict[str, list[dict]] = {}
        self.commits: dict[str, dict] = {}
        self.calls: list[tuple[str, str]] = []
        self.failing_blob_shas: set[str] = set()
        self.reject_create = False

    def add_repo(
        self,
        full_name: str,
        files: dict[str, str] | None = None,
        default_branch: str = "main",
        refs: list[str] | None = None,
    ) -> dict:
        owner, _ = full_name.split("/")
        entries = []
        for path, content in (files or {}).items():
            encoded = b64(content)
            sha = _sha(encoded)
            self.blobs[sha] = encoded
            entries.append({"path": path, "mode": "100644", "type": "blob", "sha": sha})
        head = _sha(full_name)
        self.repos[full_name] = {
            "full_name": full_name,
            "owner": owner,
            "default_branch": default_branch,
            "entries": entries,
            "refs": {name: head for name in (refs if refs is not None else [default_branch])},
        }
        return self.repos[full_name]

    def sha_of(self, full_name: str, path: str) -> str:
        return next(e["sha"] for e in self.repos[full_name]["entries"] if e["path"] == path)

    def count(self, method: str, pattern: str) -> int:
        rx = re.compile(pattern)
        return sum(1 for m, p in self.calls if m == method and rx.search(p))

    def _json(self, status: int, payload) -> httpx.Response:
        return httpx.Response(status, json=payload)

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.calls.append((method, path))
        if not request.headers.get("Authorization", "").startswith("token "):
            return self._json(401, {"message": "Requires authentication"})

        if method == "POST" and path == "/user/repos":
            body = httpx.Response(200, content=request.content).json()
            if self.reject_create:
                return self._json(422, {"message": "Repository creation failed.", "errors": [{"message": "name already exists on this account"}]})
            repo = self.add_repo(f"{self.login}/{body['name']}", {"README.md": "# init"})
            return self._json(201, {"full_name": repo["full_name"], "default_branch": "main", "owner": {"login": self.login}})

        m = re.fullmatch(r"/repos/([^/]+)/([^/]+)(/.*)?", path)
        if not m:
            return self._json(404, {"message": "Not Found"})
        full_name, rest = f"{m.group(1)}/{m.group(2)}", m.group(3) or ""
        repo = self.repos.get(full_name)
        if repo is None:
            return self._json(404, {"message": "Not Found"})

        if method == "GET" and rest == "":
            return self._json(200, {"full_name": full_name, "default_branch": repo["default_branch"], "owner": {"login": repo["owner"]}})
        if method == "GET" and rest.startswith("/git/trees/"):
            if rest.split("/")[-1] not in repo["refs"]:
                return self._json(404, {"message": "Not Found"})
            tree = [{"path": "docs", "mode": "040000", "type": "tree", "sha": _sha(full_name + "docs")}]
            for e in repo["entries"]:
                tree.append({**e, "url": f"https://api.github.com/repos/{full_name}/git/blobs/{e['sha']}"})
            return self._json(200, {"sha": "root", "tree": tree, "truncated": False})
        if method == "GET" and rest.startswith("/git/blobs/"):
            sha = rest.split("/")[-1]
            if sha in self.failing_blob_shas:
                return self._json(403, {"message": "blob unavailable"})
            return self._json(200, {"sha": sha, "content": self.blobs[sha], "encoding": "base64"})
        if method == "POST" and rest == "/git/blobs":
            body = httpx.Response(200, content=request.content).json()
            sha = _sha(body["content"])
            self.blobs[sha] = body["content"]
            return self._json(201, {"sha": sha})
        if method == "POST" and rest == "/git/trees":
            body = httpx.Response(200, content=request.content).json()
            sha = _sha(repr(body))
            self.trees[sha] = body["tree"]
            return self._json(201, {"sha": sha, "base_tree": body.get("base_tree")})
        if method == "POST" and rest == "/git/commits":
            body = httpx.Response(200, content=request.content).json()
            sha = _sha(repr(body))
            self.commits[sha] = body
            return self._json(201, {"sha": sha})
        m = re.fullmatch(r"/git/refs/heads/(.+)", rest)
        if method == "PATCH" and m:
            branch = m.group(1)
            if branch not in repo["refs"]:
                return self._json(422, {"message": "Reference does not exist"})
            body = httpx.Response(200, content=request.content).json()
            repo["refs"][branch] = body["sha"]
            return self._json(200, {"ref": f"refs/heads/{branch}", "object": {"sha": body["sha"]}})
        return self._json(404, {"message": "Not Found"})

    def client_factory(self):
        from remixhub.services.github import GitHubClient

        def make(token: str) -> GitHubClient:
            return GitHubClient(token, base_url="https://api.github.com", transport=httpx.MockTransport(self.handler))

        return make


class FakeMercadoPago:
    """In-memory stand-in for /v1/payments."""

    def __init__(self):
        self.payments: dict[str, dict] = {}
        self.ids = itertools.count(1000)
        self.fail_create = False
        self.fail_get = False
        self.requests: list[httpx.Request] = []
        self.initial_status = "pending"

    def set_status(self, payment_id: str, status: str) -> None:
        self.payments[str(payment_id)]["status"] = status

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/v1/payments":
            if self.fail_create:
                return httpx.Response(400, json={"message": "invalid payer identification", "status": 400})
            body = httpx.Response(200, content=request.content).json()
            pid = next(self.ids)
            self.payments[str(pid)] = {
                "id": pid,
                "status": self.initial_status,
                "transaction_amount": body["transaction_amount"],
                "external_reference": body.get("external_reference"),
                "payer": {"email": body["payer"]["email"]},
                "point_of_interaction": {
                    "transaction_data": {
                        "qr_code": f"00020126-pix-{pid}",
                        "qr_code_base64": "iVBORw0KGgo=",
                        "ticket_url": f"https://mercadopago.test/ticket/{pid}",
                    }
                },
            }
            return httpx.Response(201, json=self.payments[str(pid)])
        m = re.fullmatch(r"/v1/payments/(\d+)", request.url.path)
        if request.method == "GET" and m:
            if self.fail_get:
                return httpx.Response(500, json={"message": "internal_error"})
            payment = self.payments.get(m.group(1))
            if payment is None:
                return httpx.Response(404, json={"message": "Payment not found"})
            return httpx.Response(200, json=payment)
        return httpx.Response(404, json={"message": "not found"})

    def factory(self):
        from remixhub.services.mercadopago import MercadoPagoClient

        def make() -> MercadoPagoClient:
            return MercadoPagoClient(
                access_token="TEST-access-token",
                base_url="https://api.mercadopago.com",
                transport=httpx.MockTransport(self.handler),
            )

        return make


@pytest.fixture
def settings():
    from remixhub.core.config import get_settings
    return get_settings()


@pytest_asyncio.fixture
async def db():
    from mongomock_motor import AsyncMongoMockClient
    from remixhub.db.init import init_db
    client = AsyncMongoMockClient()
    await init_db(client)
    yield client


@pytest_asyncio.fixture
async def user(db):
    from remixhub.models.user import User
    u = User(email="ana@example.com", name="Ana", cpf="123.456.789-09")
    await u.insert()
    return u


@pytest.fixture
def github():
    return FakeGitHub()


@pytest.fixture
def mercadopago():
    return FakeMercadoPago()


@pytest_asyncio.fixture
async def client(db) -> AsyncGenerator[AsyncClient, None]:
    from remixhub.main import create_app
    app = create_app(use_lifespan=False)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.fixture
def session_cookie(user):
    from remixhub.core.security import create_session_cookie
    from remixhub.deps import SESSION_COOKIE_NAME
    value = create_session_cookie({"user_id": str(user.id), "session_version": user.session_version})
    return {SESSION_COOKIE_NAME: value}
