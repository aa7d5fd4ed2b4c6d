from typing import Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi.testclient import TestClient

from swadesh.auth import GOOGLE_TOKEN_URL, GOOGLE_USERINFO_URL, GoogleOAuthClient
from swadesh.gemini import TextGenerator
from swadesh.main import create_app
from swadesh.storage import InMemoryStorage


class FakeGenerator(TextGenerator):
    def __init__(self) -> None:
        self.reply = "Namaste! How can I help you today?"
        self.error: Optional[Exception] = None
        self.calls: List[Dict[str, Optional[str]]] = []

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        image_base64: Optional[str] = None,
        image_mime_type: str = "image/jpeg",
    ) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "system_instruction": system_instruction,
                "image_base64": image_base64,
            }
        )
        if self.error is not None:
            raise self.error
        return self.reply

    @property
    def last_call(self) -> Dict[str, Optional[str]]:
        return self.calls[-1]


class FakeGoogle:
    def __init__(self) -> None:
        self.identity: Dict[str, object] = {
            "sub": "google-user-1",
            "email": "asha@example.com",
            "given_name": "Asha",
            "family_name": "Verma",
            "picture": "https://example.com/asha.png",
        }
        self.token_status = 200
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == GOOGLE_TOKEN_URL:
            if self.token_status >= 400:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            return httpx.Response(200, json={"access_token": "access-token-123"})
        if url == GOOGLE_USERINFO_URL:
            if request.headers.get("Authorization") != "Bearer access-token-123":
                return httpx.Response(401)
            return httpx.Response(200, json=self.identity)
        return httpx.Response(404)


@pytest.fixture()
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture()
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture()
def google_oauth(fake_google: FakeGoogle) -> GoogleOAuthClient:
    return GoogleOAuthClient(
        client_id="client-id",
        client_secret="client-secret",
        base_url="http://testserver",
        transport=httpx.MockTransport(fake_google.handler),
    )


@pytest.fixture()
def app(storage: InMemoryStorage, generator: FakeGenerator, google_oauth: GoogleOAuthClient):
    return create_app(storage=storage, generator=generator, google_oauth=google_oauth)


@pytest.fixture()
def client(app) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def make_client(app) -> Callable[[], TestClient]:
    return lambda: TestClient(app)


@pytest.fixture()
def login(fake_google: FakeGoogle) -> Callable[..., httpx.Response]:
    def _login(client: TestClient, sub: str = "google-user-1", **profile: object) -> httpx.Response:
        fake_google.identity = {"sub": sub, "email": f"{sub}@example.com", **profile}
        start = client.get("/api/login", follow_redirects=False)
        assert start.status_code == 302
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
        callback = client.get(
            "/api/auth/callback/google",
            params={"code": "auth-code", "state": state},
            follow_redirects=False,
        )
        assert callback.status_code == 302, callback.text
        assert callback.headers["location"] == "/"
        return callback

    return _login


@pytest.fixture()
def user_client(client: TestClient, login) -> TestClient:
    login(client, "u1", given_name="Asha", family_name="Verma")
    return client
