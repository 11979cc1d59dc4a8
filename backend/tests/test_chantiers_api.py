"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Chantiers Console - Tests API /api/chantiers                                ║
║                                                                              ║
║  App FastAPI complète, base remplacée par FakeDatabase via                   ║
║  dependency_overrides. Aucun serveur ni MongoDB requis.                      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

import config
from routes.deps import get_database, get_user_name_resolver
from server import app
from services.user_names import UserNameResolver

from tests.conftest import CHEF_ID, CLIENT_ID, TEMPLATE_ID

HEADERS = {"X-User-Id": CHEF_ID}


@pytest.fixture
def api_db(fake_db):
    fake_db.users.docs.append({"_id": CHEF_ID, "id": CHEF_ID, "display_name": "Paul Chef"})
    resolver = UserNameResolver(fake_db.users)
    app.dependency_overrides[get_database] = lambda: fake_db
    app.dependency_overrides[get_user_name_resolver] = lambda: resolver
    yield fake_db
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api(api_db):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _create_body(**overrides):
    now = datetime.now(timezone.utc)
    body = {
        "client_id": CLIENT_ID,
        "project_template_id": TEMPLATE_ID,
        "name": "Maison Dupont",
        "address": "12 rue des Lilas, Lyon",
        "assigned_chef_id": CHEF_ID,
        "start_date": (now - timedelta(days=10)).isoformat(),
        "planned_end_date": (now + timedelta(days=80)).isoformat(),
    }
    body.update(overrides)
    return body


async def _create(api, **overrides):
    response = await api.post("/api/chantiers", json=_create_body(**overrides), headers=HEADERS)
    assert response.status_code == 200, response.text
    return response.json()["chantier"]


class TestChantiersCrud:

    @pytest.mark.asyncio
    async def test_requires_actor(self, api):
        response = await api.get("/api/chantiers")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_create_and_read(self, api, api_db):
        chantier = await _create(api)
        assert chantier["status"] == "En attente"
        assert len(chantier["phases"]) == 5

        response = await api.get(f"/api/chantiers/{chantier['id']}", headers=HEADERS)
        assert response.status_code == 200
        data = response.json()
        assert data["chantier"]["id"] == chantier["id"]
        assert data["user_names"][CHEF_ID] == "Paul Chef"

        events = [e["action"] for e in api_db.event_log.docs]
        assert events == ["chantier_create"]
        print(f"✅ Chantier créé via API: {chantier['id']}")

    @pytest.mark.asyncio
    async def test_create_unknown_client(self, api):
        response = await api.post("/api/chantiers", json=_create_body(client_id="nope"), headers=HEADERS)
        assert response.status_code == 404
        assert "Client" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_create_unknown_template(self, api):
        response = await api.post(
            "/api/chantiers", json=_create_body(project_template_id="nope"), headers=HEADERS
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_create_inverted_dates(self, api):
        now = datetime.now(timezone.utc)
        response = await api.post("/api/chantiers", json=_create_body(
            start_date=now.isoformat(), planned_end_date=(now - timedelta(days=1)).isoformat()
        ), headers=HEADERS)
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_unknown(self, api):
        response = await api.get("/api/chantiers/inconnu", headers=HEADERS)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_with_stats(self, api):
        await _create(api)
        await _create(api, assigned_chef_id="autre-chef")

        data = (await api.get("/api/chantiers", headers=HEADERS)).json()
        assert data["count"] == 2
        assert data["stats"] == {"total": 2, "en_cours": 0, "termines": 0, "en_retard": 0, "en_attente": 2}

        mine = (await api.get(f"/api/chantiers?chef_id={CHEF_ID}", headers=HEADERS)).json()
        assert mine["count"] == 1

        client = (await api.get(f"/api/chantiers?client_id={CLIENT_ID}", headers=HEADERS)).json()
        assert client["count"] == 1

    @pytest.mark.asyncio
    async def test_update_and_delete(self, api):
        chantier = await _create(api)
        response = await api.patch(
            f"/api/chantiers/{chantier['id']}", json={"name": "Maison D."}, headers=HEADERS
        )
        assert response.json()["chantier"]["name"] == "Maison D."

        response = await api.delete(f"/api/chantiers/{chantier['id']}", headers=HEADERS)
        assert response.json() == {"success": True}
        response = await api.delete(f"/api/chantiers/{chantier['id']}", headers=HEADERS)
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_store_unavailable(self, api, api_db):
        api_db["chantiers"].fail_on("find")
        response = await api.get("/api/chantiers", headers=HEADERS)
        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_applied_mutation(self, api, api_db):
        chantier = await _create(api)
        phase_id = chantier["phases"][0]["id"]
        api_db.event_log.fail_on("insert_one")

        response = await api.patch(
            f"/api/chantiers/{chantier['id']}/phases/{phase_id}/progress",
            json={"progress": 100}, headers=HEADERS
        )
        assert response.status_code == 200
        assert response.json()["chantier"]["phases"][0]["progress"] == 100

        stored = (await api.get(f"/api/chantiers/{chantier['id']}", headers=HEADERS)).json()
        assert stored["chantier"]["phases"][0]["progress"] == 100
        assert [e["action"] for e in api_db.event_log.docs] == ["chantier_create"]
        print("✅ Journal indisponible: mutation appliquée et confirmée")


class TestPhasesApi:

    @pytest.mark.asyncio
    async def test_progress_flow(self, api, api_db):
        chantier = await _create(api)
        phase_id = chantier["phases"][0]["id"]
        url = f"/api/chantiers/{chantier['id']}/phases/{phase_id}"

        response = await api.patch(f"{url}/progress", json={"progress": 20, "notes": "Go"}, headers=HEADERS)
        assert response.status_code == 200
        data = response.json()["chantier"]
        assert data["global_progress"] == 4
        assert data["status"] == "En cours"
        assert data["phases"][0]["status"] == "in-progress"

        response = await api.patch(f"{url}/progress", json={"progress": 250}, headers=HEADERS)
        assert response.json()["chantier"]["phases"][0]["progress"] == 100

        response = await api.patch(f"{url}/blocked", json={"blocked": True}, headers=HEADERS)
        assert response.json()["chantier"]["phases"][0]["status"] == "blocked"

        response = await api.post(f"{url}/photos", json={"url": "https://cdn.example/a.jpg"}, headers=HEADERS)
        assert response.json()["photo"]["phase_id"] == phase_id

        actions = [e["action"] for e in api_db.event_log.docs]
        assert actions == ["chantier_create", "phase_progress", "phase_progress", "phase_blocked", "photo_add"]

    @pytest.mark.asyncio
    async def test_unknown_phase(self, api):
        chantier = await _create(api)
        response = await api.patch(
            f"/api/chantiers/{chantier['id']}/phases/nope/progress", json={"progress": 10}, headers=HEADERS
        )
        assert response.status_code == 404
        assert "Phase" in response.json()["detail"]


class TestTeamAndUpdatesApi:

    @pytest.mark.asyncio
    async def test_team(self, api):
        chantier = await _create(api)
        base = f"/api/chantiers/{chantier['id']}/team"

        response = await api.post(base, json={"name": "Karim", "role": "Maçon"}, headers=HEADERS)
        member = response.json()["member"]
        assert member["added_by"] == CHEF_ID

        assert (await api.delete(f"{base}/{member['id']}", headers=HEADERS)).status_code == 200
        assert (await api.delete(f"{base}/{member['id']}", headers=HEADERS)).status_code == 404

    @pytest.mark.asyncio
    async def test_updates(self, api):
        chantier = await _create(api)
        url = f"/api/chantiers/{chantier['id']}/updates"

        await api.post(url, json={"title": "Livraison", "type": "delivery"}, headers=HEADERS)
        await api.post(url, json={"title": "Fondations OK", "type": "milestone"}, headers=HEADERS)

        data = (await api.get(f"/api/chantiers/{chantier['id']}", headers=HEADERS)).json()
        assert [u["title"] for u in data["chantier"]["updates"]] == ["Fondations OK", "Livraison"]

    @pytest.mark.asyncio
    async def test_refresh_status_endpoint(self, api):
        response = await api.post("/api/chantiers/refresh-status", headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["checked"] == 0


class TestRealtimeWs:

    def test_list_snapshot_then_change(self, api_db, monkeypatch):
        monkeypatch.setattr(config, "STATUS_REFRESH_ENABLED", False)
        monkeypatch.setattr(config, "client", _NoopClient())

        with TestClient(app) as client:
            created = client.post("/api/chantiers", json=_create_body(), headers=HEADERS).json()["chantier"]

            with client.websocket_connect("/api/chantiers/ws") as ws:
                snapshot = ws.receive_json()
                assert snapshot["type"] == "snapshot"
                assert snapshot["count"] == 1
                assert snapshot["stats"]["en_attente"] == 1

                phase_id = created["phases"][0]["id"]
                client.patch(
                    f"/api/chantiers/{created['id']}/phases/{phase_id}/progress",
                    json={"progress": 50}, headers=HEADERS
                )
                snapshot = ws.receive_json()
                assert snapshot["chantiers"][0]["global_progress"] == 10
                assert snapshot["stats"]["en_cours"] == 1
        print("✅ WebSocket: snapshot initial puis mise à jour")

    def test_single_chantier_snapshot(self, api_db, monkeypatch):
        monkeypatch.setattr(config, "STATUS_REFRESH_ENABLED", False)
        monkeypatch.setattr(config, "client", _NoopClient())

        with TestClient(app) as client:
            with client.websocket_connect("/api/chantiers/inconnu/ws") as ws:
                assert ws.receive_json() == {"type": "snapshot", "chantier": None}


class _NoopClient:
    def close(self):
        pass
