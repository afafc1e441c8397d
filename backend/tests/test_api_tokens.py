"""
Tests for the HTTP routes with the orchestrator mocked out.
"""
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from token_manager.broker.schemas import ReplyErr, ReplyOk, SiteReply
from token_manager.errors import BrokerUnreachable, InvalidTaskError, NoRepliesReceived, TokenNotFound
from token_manager.main import create_app
from token_manager.schemas import ProjectQueryParams, TokenParams, TokensQueryParams
from token_manager.storage import get_db

SITE = "opal.site-a.broker"
TOKEN_BODY = {"user_id": "alice", "project_id": "p1", "bridgehead_ids": [SITE]}


@pytest.fixture
def mock_orchestrator():
    orchestrator = AsyncMock()
    orchestrator.pending = 0
    orchestrator.dispatcher.broker.base_url = "http://beam.test"
    return orchestrator


@pytest.fixture
def client(settings, mock_orchestrator):
    app = create_app(settings)
    app.state.orchestrator = mock_orchestrator

    async def override_get_db():
        yield AsyncMock()

    app.dependency_overrides[get_db] = override_get_db
    # No context manager: the lifespan would build a real broker client
    return TestClient(app)


class TestCreateAndRefresh:

    def test_create_token(self, client, mock_orchestrator):
        response = client.post("/api/token", json=TOKEN_BODY)

        assert response.status_code == 200
        mock_orchestrator.create_tokens.assert_awaited_once_with(TokenParams(**TOKEN_BODY))

    def test_create_token_broker_down(self, client, mock_orchestrator):
        mock_orchestrator.create_tokens.side_effect = BrokerUnreachable("Error posting task to beam", "t1")

        response = client.post("/api/token", json=TOKEN_BODY)

        assert response.status_code == 500
        assert response.json() == {"message": "Error posting task to beam"}

    def test_create_token_invalid_bridgehead(self, client, mock_orchestrator):
        mock_orchestrator.create_tokens.side_effect = InvalidTaskError("Invalid bridgehead id: 'bad id'")

        response = client.post("/api/token", json={**TOKEN_BODY, "bridgehead_ids": ["bad id"]})

        assert response.status_code == 422

    def test_create_token_missing_fields(self, client, mock_orchestrator):
        response = client.post("/api/token", json={"user_id": "alice"})

        assert response.status_code == 422
        mock_orchestrator.create_tokens.assert_not_awaited()

    def test_refresh_unknown_token(self, client, mock_orchestrator):
        mock_orchestrator.refresh_tokens.side_effect = TokenNotFound("No token for user alice in project p1")

        response = client.put("/api/refreshToken", json=TOKEN_BODY)

        assert response.status_code == 404

    def test_refresh_token(self, client, mock_orchestrator):
        response = client.put("/api/refreshToken", json=TOKEN_BODY)

        assert response.status_code == 200
        mock_orchestrator.refresh_tokens.assert_awaited_once()


class TestRemoval:

    def test_remove_tokens_ok(self, client, mock_orchestrator):
        mock_orchestrator.remove_tokens.return_value = SiteReply(SITE, ReplyOk("DELETED"))

        response = client.delete("/api/token", params={"user_id": "alice", "bk": SITE, "project_id": "p1"})

        assert response.status_code == 200
        mock_orchestrator.remove_tokens.assert_awaited_once_with(
            TokensQueryParams(user_id="alice", bk=SITE, project_id="p1")
        )

    def test_remove_tokens_site_error_status(self, client, mock_orchestrator):
        mock_orchestrator.remove_tokens.return_value = SiteReply(SITE, ReplyErr(404, "no such token"))

        response = client.delete("/api/token", params={"user_id": "alice", "bk": SITE, "project_id": "p1"})

        assert response.status_code == 404
        assert response.json() == {"error": "no such token"}

    def test_remove_project_odd_status_falls_back_to_500(self, client, mock_orchestrator):
        mock_orchestrator.remove_project.return_value = SiteReply(SITE, ReplyErr(200, "weird"))

        response = client.delete("/api/project", params={"bk": SITE, "project_id": "p1"})

        assert response.status_code == 500

    def test_remove_project_no_replies(self, client, mock_orchestrator):
        mock_orchestrator.remove_project.side_effect = NoRepliesReceived("t1")

        response = client.delete("/api/project", params={"bk": SITE, "project_id": "p1"})

        assert response.status_code == 500
        assert response.json() == {"message": "No messages received or processed"}

    def test_remove_project_requires_query(self, client):
        response = client.delete("/api/project", params={"bk": SITE})

        assert response.status_code == 422


class TestStatus:

    def test_project_status(self, client, mock_orchestrator):
        mock_orchestrator.project_status.return_value = {"project_id": "p1", "bk": SITE, "project_status": "CREATED"}

        response = client.get("/api/project-status", params={"bk": SITE, "project_id": "p1"})

        assert response.status_code == 200
        assert response.json()["project_status"] == "CREATED"
        mock_orchestrator.project_status.assert_awaited_once_with(ProjectQueryParams(bk=SITE, project_id="p1"))

    def test_token_status(self, client, mock_orchestrator):
        mock_orchestrator.token_status.return_value = {
            "project_id": "p1",
            "bk": SITE,
            "user_id": "alice",
            "token_created_at": "01-01-2026 10:00:00",
            "project_status": "CREATED",
            "token_status": "CREATED",
        }

        response = client.get("/api/token-status", params={"user_id": "alice", "bk": SITE, "project_id": "p1"})

        assert response.status_code == 200
        assert response.json()["token_status"] == "CREATED"

    @pytest.mark.parametrize("available, text", [(True, "true"), (False, "false")])
    def test_authentication_status(self, client, mock_orchestrator, available, text):
        mock_orchestrator.authentication_status.return_value = available

        response = client.post("/api/authentication-status", json=TOKEN_BODY)

        assert response.status_code == 200
        assert response.text == text


class TestScript:

    def test_script_is_plain_text(self, client, mock_orchestrator):
        mock_orchestrator.generate_script.return_value = "library(DSI)\n"

        response = client.post("/api/script", json=TOKEN_BODY)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "library(DSI)\n"

    def test_script_broker_error(self, client, mock_orchestrator):
        mock_orchestrator.generate_script.side_effect = NoRepliesReceived("t1", "Error: opal down")

        response = client.post("/api/script", json=TOKEN_BODY)

        assert response.status_code == 500
        assert response.json() == {"message": "Error: opal down"}


class TestHealth:

    def test_health(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["broker"] == "http://beam.test"
        assert body["pending_operations"] == 0

    def test_request_id_echoed(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"


class TestAppLifespan:

    def test_uses_configured_database(self, settings):
        app = create_app(settings)

        assert str(app.state.engine.url) == settings.database_url

        with TestClient(app) as live:
            response = live.get("/api/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        assert response.json()["broker"] == settings.beam_url
