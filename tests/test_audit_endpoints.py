"""HTTP tests for the audit endpoints: status mapping, scoping and export downloads."""

import csv
import io
import json
from datetime import datetime, timedelta, UTC

from fastapi.testclient import TestClient

from encore_sec.audit.models import AuditOutcome, AuditRecord
from encore_sec.audit.store import InMemoryAuditStore
from encore_sec.config import SecuritySettings
from encore_sec.constants import Roles
from encore_sec.core import build_security_core
from encore_sec.crypto.jwt import create_access_token
from encore_sec.exceptions import StoreUnavailable
from encore_sec.main import app, get_core
from encore_sec.notifications import RecordingRelay

SECRET = "test-secret"


class UnavailableAuditStore(InMemoryAuditStore):
    """Backend that accepts writes but cannot be read"""

    def _select(self, filters, limit, offset):
        raise StoreUnavailable(operation="query")


class TestAuditEndpoints:
    """Audit API behaviour through the FastAPI app."""

    def setup_method(self) -> None:
        self.settings = SecuritySettings(
            database_url="sqlite://",
            jwt_secret_key=SECRET,
            notifications_enabled=False,
        )
        self.store = InMemoryAuditStore()
        self.relay = RecordingRelay()
        self.use_store(self.store)

    def teardown_method(self) -> None:
        app.dependency_overrides.clear()

    def use_store(self, store) -> None:
        self.core = build_security_core(self.settings, store=store, relay=self.relay)
        app.dependency_overrides[get_core] = lambda: self.core
        self.client = TestClient(app)

    def auth(self, user_id: str, *roles: str) -> dict:
        token = create_access_token(user_id, list(roles), SECRET)
        return {"Authorization": f"Bearer {token}"}

    def seed(self) -> None:
        for actor, action in (("alice", "REQUEST_CREATE"), ("bob", "REQUEST_CREATE"), ("alice", "SONG_VIEW")):
            self.store.append(AuditRecord.create(action=action, entity_type="REQUEST", actor_user_id=actor,
                                                 details={"note": f"{actor} did {action}"}))

    def test_health(self) -> None:
        response = self.client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_missing_token_is_401(self) -> None:
        response = self.client.get("/audit/logs")

        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["detail"]["error"] == "AUTHENTICATION_REQUIRED"

    def test_token_signed_with_other_secret_is_401(self) -> None:
        token = create_access_token("alice", [Roles.SUPER_ADMIN], "not-the-secret")

        response = self.client.get("/audit/logs", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401

    def test_player_cannot_view_logs(self) -> None:
        response = self.client.get("/audit/logs", headers=self.auth("p1", Roles.PLAYER))

        assert response.status_code == 403
        detail = response.json()["detail"]
        assert detail["error"] == "PERMISSION_DENIED"
        assert Roles.PLAYER not in detail["message"]
        [denial] = self.store.all_records()
        assert denial.outcome == AuditOutcome.DENIED
        assert denial.actor_user_id == "p1"

    def test_admin_lists_logs_with_filters(self) -> None:
        self.seed()

        response = self.client.get("/audit/logs", params={"userId": "alice", "limit": 10},
                                   headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 200
        body = response.json()
        assert {log["actorUserId"] for log in body["logs"]} == {"alice"}
        assert body["pagination"] == {"total": 2, "limit": 10, "offset": 0, "hasMore": False}

    def test_viewing_logs_is_itself_audited(self) -> None:
        self.client.get("/audit/logs", headers=self.auth("root", Roles.SUPER_ADMIN))

        [record] = self.store.all_records()
        assert record.action == "AUDIT_LOG_VIEW"
        assert record.actor_user_id == "root"

    def test_malformed_filter_is_400(self) -> None:
        response = self.client.get("/audit/logs", params={"startDate": "yesterday"},
                                   headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "VALIDATION_ERROR"

    def test_my_activity_ignores_forged_user_filter(self) -> None:
        self.seed()

        response = self.client.get("/audit/my-activity", params={"userId": "bob"},
                                   headers=self.auth("alice", Roles.PLAYER))

        assert response.status_code == 200
        logs = response.json()["logs"]
        assert len(logs) == 2
        assert {log["actorUserId"] for log in logs} == {"alice"}

    def test_my_stats(self) -> None:
        self.seed()

        response = self.client.get("/audit/my-stats", headers=self.auth("bob", Roles.PLAYER))

        assert response.status_code == 200
        assert response.json()["total"] == 1

    def test_host_admin_sees_user_stats(self) -> None:
        self.seed()

        response = self.client.get("/audit/stats/user/alice", params={"days": 7},
                                   headers=self.auth("h1", Roles.HOST_ADMIN))

        assert response.status_code == 200
        assert response.json()["total"] == 2

    def test_malformed_user_id_is_400(self) -> None:
        response = self.client.get("/audit/stats/user/not%20valid", headers=self.auth("h1", Roles.HOST_ADMIN))

        assert response.status_code == 400
        assert response.json()["detail"]["details"]["field"] == "userId"

    def test_entity_history(self) -> None:
        self.store.append(AuditRecord.create(action="SONG_CREATE", entity_type="SONG",
                                             entity_id="5", actor_user_id="s1"))

        response = self.client.get("/audit/entity/SONG/5", headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 200
        body = response.json()
        assert body["entityId"] == "5"
        assert [entry["action"] for entry in body["history"]] == ["SONG_CREATE"]

    def test_cleanup_rejects_zero_retention(self) -> None:
        self.seed()

        response = self.client.post("/audit/cleanup", json={"retentionDays": 0},
                                    headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 400
        assert sum(1 for r in self.store.all_records() if r.action != "AUDIT_LOG_CLEANUP") == 3

    def test_cleanup_without_retention_is_400(self) -> None:
        self.store.append(AuditRecord.create(action="REQUEST_CREATE", entity_type="REQUEST", actor_user_id="alice",
                                             timestamp=datetime.now(UTC) - timedelta(days=400)))

        response = self.client.post("/audit/cleanup", json={}, headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 400
        assert response.json()["detail"]["details"]["field"] == "retentionDays"
        assert sum(1 for r in self.store.all_records() if r.action == "REQUEST_CREATE") == 1

    def test_cleanup_reports_deleted_count(self) -> None:
        self.seed()

        response = self.client.post("/audit/cleanup", json={"retentionDays": 30},
                                    headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 200
        assert response.json() == {"deletedCount": 0, "retentionDays": 30}

    def test_cleanup_requires_delete_permission(self) -> None:
        response = self.client.post("/audit/cleanup", json={"retentionDays": 30},
                                    headers=self.auth("h1", Roles.HOST_ADMIN))

        assert response.status_code == 403

    def test_invalid_json_body_is_400(self) -> None:
        headers = {**self.auth("root", Roles.SUPER_ADMIN), "Content-Type": "application/json"}

        response = self.client.post("/audit/cleanup", content=b"{not json", headers=headers)

        assert response.status_code == 400

    def test_csv_export_download(self) -> None:
        self.seed()

        response = self.client.post("/audit/export/csv", json={"filters": {"userId": "alice"}},
                                    headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0][0] == "timestamp"
        assert len(rows) - 1 == 2

    def test_json_export_document(self) -> None:
        self.seed()

        response = self.client.post("/audit/export", json={"format": "JSON"},
                                    headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 200
        document = json.loads(response.content)
        assert document["record_count"] == 3
        assert len(document["records"]) == 3

    def test_unknown_export_format_is_400(self) -> None:
        response = self.client.post("/audit/export", json={"format": "XML"},
                                    headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 400

    def test_store_outage_is_503_with_retry_after(self) -> None:
        self.use_store(UnavailableAuditStore())

        response = self.client.get("/audit/logs", headers=self.auth("root", Roles.SUPER_ADMIN))

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "5"
        assert response.json()["detail"]["details"]["retryable"] is True

    def test_whoami(self) -> None:
        response = self.client.get("/auth/me", headers=self.auth("s1", Roles.SINGER))

        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "s1"
        assert body["roles"] == [Roles.SINGER]

    def test_security_config_hides_secrets(self) -> None:
        response = self.client.get("/security/config")

        assert response.status_code == 200
        assert SECRET not in response.text
        assert "database_url" not in response.json()
