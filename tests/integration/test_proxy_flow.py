"""
Integration tests for the complete proxy flow.

The proxy app runs in-process behind httpx's ASGI transport; the identity
provider and the upstream service are in-process httpx mock transports.
"""

import asyncio

import httpx
import pytest
import pytest_asyncio

from service_proxy.app.config import PROXY_BASE_URL_ENV, load_settings
from service_proxy.app.forwarder import Forwarder
from service_proxy.app.jwks import KeyResolver
from service_proxy.app.main import ProxyService
from shared.test_helpers import MockIdentityProvider, create_claims, json_response


class RecordingUpstream:
    """Upstream service remembering every request it served."""

    def __init__(self):
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return json_response(200, {"path": request.url.path, "query": request.url.query.decode()})


class TestProxyFlow:
    """Integration tests for authenticate, rewrite and forward."""

    @pytest.fixture(autouse=True)
    def base_url(self, monkeypatch):
        monkeypatch.setenv(PROXY_BASE_URL_ENV, "/api/candidates")

    @pytest.fixture
    def idp(self):
        provider = MockIdentityProvider()
        provider.add_key("key-1")
        return provider

    @pytest.fixture
    def upstream(self):
        return RecordingUpstream()

    @pytest.fixture
    def service(self, tmp_path, idp, upstream):
        config_file = tmp_path / "proxy.yaml"
        config_file.write_text(
            "name: jwt-proxy-it\n"
            "jwt:\n"
            f"  issuer: {idp.issuer}\n"
            "  audience: jwt-proxy-tests\n"
            "  filter:\n"
            "    email: /@example\\.com$/\n"
            "  mapper:\n"
            "    email: X-AUTH-EMAIL\n"
            "    roles: X-AUTH-ROLES\n"
            "proxy:\n"
            "  url: http://candidates.internal:9000\n"
        )
        settings = load_settings(str(config_file))
        return ProxyService(
            settings,
            key_resolver=KeyResolver(http_client=idp.client(), max_cache_age_ms=settings.jwt.max_cache_age_ms),
            forwarder=Forwarder(
                settings.get_proxy_target(),
                http_client=httpx.AsyncClient(transport=httpx.MockTransport(upstream.handler)),
            ),
        )

    @pytest_asyncio.fixture
    async def client(self, service):
        transport = httpx.ASGITransport(app=service.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://proxy.local") as client:
            yield client

    @pytest.mark.asyncio
    async def test_complete_flow(self, client, idp, upstream):
        """Test token validation, header mapping and URL rewrite end to end."""
        token = idp.keys[0].sign(create_claims(roles=["recruiter", "admin"]))

        response = await client.get(
            "/api/candidates/42?fields=name",
            headers={"Authorization": f"Bearer {token}", "X-Auth-Roles": "superuser"},
        )

        assert response.status_code == 200
        assert response.json() == {"path": "/42", "query": "fields=name"}

        forwarded = upstream.requests[0]
        assert forwarded.url.host == "candidates.internal"
        assert forwarded.url.port == 9000
        assert forwarded.headers["x-auth-email"] == "john.doe@example.com"
        assert forwarded.headers.get_list("x-auth-roles") == ["recruiter,admin"]

    @pytest.mark.asyncio
    async def test_keys_fetched_once(self, client, idp):
        """Test repeated and concurrent requests reuse one key lookup."""
        token = idp.keys[0].sign(create_claims())
        headers = {"Authorization": f"Bearer {token}"}

        responses = await asyncio.gather(*(client.get("/api/candidates", headers=headers) for _ in range(5)))
        responses.append(await client.get("/api/candidates/1", headers=headers))

        assert all(r.status_code == 200 for r in responses)
        assert idp.count("/.well-known/openid-configuration") == 1
        assert idp.count("/certs") == 1

    @pytest.mark.asyncio
    async def test_key_rotation(self, client, idp):
        """Test a token signed by a newly published key is accepted."""
        await client.get("/api/candidates", headers={"Authorization": f"Bearer {idp.keys[0].sign(create_claims())}"})
        rotated = idp.add_key("key-2")

        response = await client.get(
            "/api/candidates",
            headers={"Authorization": f"Bearer {rotated.sign(create_claims())}"},
        )

        assert response.status_code == 200
        assert idp.count("/certs") == 2

    @pytest.mark.asyncio
    async def test_filter_rejects_foreign_email(self, client, idp, upstream):
        token = idp.keys[0].sign(create_claims(email="mallory@example.org"))

        response = await client.get("/api/candidates", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert response.json()["error"] == "UnauthorizedError"
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_wrong_prefix_rejected_after_authentication(self, client, idp, upstream):
        token = idp.keys[0].sign(create_claims())

        response = await client.get("/api/jobs/1", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 400
        assert upstream.requests == []

    @pytest.mark.asyncio
    async def test_identity_provider_down(self, client, idp, upstream):
        idp.discovery_override = lambda request: httpx.Response(503)
        token = idp.keys[0].sign(create_claims())

        response = await client.get("/api/candidates", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401
        assert "Failed to discover JWKS URI" in response.json()["message"]
        assert upstream.requests == []

