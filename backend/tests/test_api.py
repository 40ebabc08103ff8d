"""
End-to-end tests through the FastAPI app: login, certificate entry,
report generation/export/sharing, public snapshot viewing and the
admin surface.
"""
import pytest
from datetime import date, datetime, timedelta, timezone

CERT_URL = "https://drive.google.com/file/d/1AbCdEfGhIjKlMnOpQrStUvWxYz012345/view"


@pytest.fixture(autouse=True)
def offline_drive():
    """File storage is never reachable from tests."""
    from cme_tracker.main import app
    from cme_tracker.services.integrations import DriveBridgeClient, get_drive_bridge

    app.dependency_overrides[get_drive_bridge] = lambda: DriveBridgeClient(url="", token="")
    yield
    app.dependency_overrides.pop(get_drive_bridge, None)


@pytest.fixture
def people(make_user, make_certificate):
    staff = make_user("lan", name="Nguyễn Thị Lan", title_id="1", department_id="d1")
    other = make_user("binh", name="Trần Bình", title_id="4", department_id="d1")
    reporter = make_user("reporter", name="Người Báo Cáo", role="reporter")
    admin = make_user("admin", name="Quản Trị", role="admin")
    make_certificate(staff, "Hồi sức", 80, date(2024, 3, 1))
    make_certificate(staff, "Cấp cứu", 45, date(2025, 6, 1))
    make_certificate(other, "Dược", 10, date(2024, 9, 9))
    return {"staff": staff, "other": other, "reporter": reporter, "admin": admin}


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


# =============================================================================
# AUTH
# =============================================================================

class TestAuthApi:

    def test_login_returns_token_and_user(self, client, people):
        response = client.post("/auth/login", json={"username": " lan ", "password": "secret123"})

        assert response.status_code == 200
        body = response.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["username"] == "lan"
        assert "password_hash" not in body["user"]

    def test_wrong_password_then_lock(self, client, people):
        for _ in range(4):
            response = client.post("/auth/login", json={"username": "lan", "password": "nope"})
            assert response.status_code == 401

        response = client.post("/auth/login", json={"username": "lan", "password": "nope"})
        assert response.status_code == 403

        response = client.post("/auth/login", json={"username": "lan", "password": "secret123"})
        assert response.status_code == 403

    def test_me_requires_token(self, client, people, auth_headers):
        assert client.get("/auth/me").status_code in (401, 403)
        assert client.get("/auth/me", headers={"Authorization": "Bearer junk"}).status_code == 401

        response = client.get("/auth/me", headers=auth_headers(people["staff"]))
        assert response.json()["name"] == "Nguyễn Thị Lan"

    def test_disabled_after_token_issued(self, client, db, people, auth_headers):
        headers = auth_headers(people["staff"])
        people["staff"].status = "disabled"
        db.commit()

        assert client.get("/auth/me", headers=headers).status_code == 403


# =============================================================================
# CERTIFICATES
# =============================================================================

class TestCertificatesApi:

    def test_create_list_delete(self, client, people, auth_headers):
        headers = auth_headers(people["staff"])
        payload = {"name": "Kiểm soát nhiễm khuẩn", "credits": 6, "issued_on": "2024-11-02", "image_url": CERT_URL}

        created = client.post("/certificates", json=payload, headers=headers)
        assert created.status_code == 201
        assert created.json()["display_url"].startswith("https://lh3.googleusercontent.com/d/")

        listing = client.get("/certificates", params={"year": 2024}, headers=headers).json()
        assert listing["total_credits"] == 86
        assert len(listing["certificates"]) == 2

        deleted = client.delete(f"/certificates/{created.json()['id']}", headers=headers)
        assert deleted.status_code == 204

    def test_validation_errors_are_per_field(self, client, people, auth_headers):
        response = client.post(
            "/certificates",
            json={"name": "", "credits": -1, "issued_on": "2020-01-01", "image_url": ""},
            headers=auth_headers(people["staff"]),
        )

        assert response.status_code == 422
        assert set(response.json()["detail"]["errors"]) == {"name", "credits", "date", "image_url"}

    def test_staff_cannot_read_others(self, client, people, auth_headers):
        response = client.get("/certificates", params={"user_id": people["other"].id},
                              headers=auth_headers(people["staff"]))

        assert response.status_code == 403

    def test_chart(self, client, people, auth_headers):
        response = client.get("/certificates/chart", headers=auth_headers(people["staff"]))

        assert response.json()["credits_by_year"] == {"2024": 80.0, "2025": 45.0}


# =============================================================================
# REPORTS & SHARED SNAPSHOTS
# =============================================================================

class TestReportsApi:

    def test_staff_cannot_generate_reports(self, client, people, auth_headers):
        response = client.post("/reports/generate", json={"kind": "summary"},
                               headers=auth_headers(people["staff"]))

        assert response.status_code == 403

    def test_generate_summary(self, client, people, auth_headers):
        response = client.post(
            "/reports/generate",
            json={"kind": "summary", "filter_mode": "year", "year": 2024,
                  "sort_key": "total_credits", "sort_direction": "descending"},
            headers=auth_headers(people["reporter"]),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["period"] == "Năm 2024"
        assert [(r["name"], r["total_credits"]) for r in body["rows"]] == [
            ("Nguyễn Thị Lan", 80), ("Trần Bình", 10),
        ]

    def test_compliance_uses_configured_cycle(self, client, people, auth_headers):
        headers = auth_headers(people["admin"])
        client.put("/admin/settings", json={"compliance_start_year": 2024, "compliance_end_year": 2025},
                   headers=headers)

        body = client.post("/reports/generate", json={"kind": "compliance"}, headers=headers).json()
        rows = {r["name"]: r for r in body["rows"]}

        assert rows["Nguyễn Thị Lan"]["total_credits"] == 125
        assert rows["Nguyễn Thị Lan"]["status"] == "met"
        assert rows["Trần Bình"]["requirement"] == 8
        assert body["period"] == "Chu kỳ 2024-2025"

    def test_range_without_bound_is_empty(self, client, people, auth_headers):
        body = client.post(
            "/reports/generate",
            json={"kind": "detail", "filter_mode": "range", "start": "2024-01-01"},
            headers=auth_headers(people["reporter"]),
        ).json()

        assert body["rows"] == []

    def test_csv_export(self, client, people, auth_headers):
        response = client.post("/reports/export/csv", json={"kind": "department"},
                               headers=auth_headers(people["reporter"]))

        assert response.status_code == 200
        assert response.content.startswith("\ufeff".encode("utf-8"))
        assert "BaoCao_department_" in response.headers["content-disposition"]

    def test_share_and_view(self, client, people, auth_headers):
        generated = client.post("/reports/generate", json={"kind": "summary_detail"},
                                headers=auth_headers(people["reporter"])).json()
        shared = client.post("/reports/share", json={"kind": "summary_detail"},
                             headers=auth_headers(people["reporter"]))
        assert shared.status_code == 201
        link = shared.json()

        view = client.get(f"/shared/{link['id']}", params={"token": link["token"]})
        assert view.status_code == 200
        assert view.json()["headers"] == generated["headers"]
        assert view.json()["rows"] == generated["rows"]
        assert view.json()["created_by"] == "Người Báo Cáo"

        printed = client.get(f"/shared/{link['id']}/print", params={"token": link["token"]})
        assert printed.status_code == 200
        assert "Nguyễn Thị Lan" in printed.text

    def test_snapshot_denials(self, client, db, people, auth_headers):
        from cme_tracker.models.db_models import SharedReportDB

        link = client.post("/reports/share", json={"kind": "summary"},
                           headers=auth_headers(people["reporter"])).json()

        assert client.get("/shared/unknown-id", params={"token": link["token"]}).status_code == 404
        assert client.get(f"/shared/{link['id']}", params={"token": "bad"}).status_code == 403
        assert client.get(f"/shared/{link['id']}").status_code == 403

        row = db.query(SharedReportDB).filter(SharedReportDB.id == link["id"]).first()
        row.expires_at = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=1)
        db.commit()
        assert client.get(f"/shared/{link['id']}", params={"token": link["token"]}).status_code == 410

    def test_statistics_and_inspection(self, client, people, auth_headers):
        headers = auth_headers(people["reporter"])

        stats = client.get("/reports/statistics", params={"year": 2024}, headers=headers).json()
        assert stats["staff_count"] == 2
        assert stats["monthly_certificates"][2] == 1

        assert client.get("/reports/inspection/certificate-names", params={"q": "hoi"},
                          headers=headers).json() == ["Hồi sức"]
        holders = client.get("/reports/inspection/holders", params={"name": "Dược"}, headers=headers).json()
        assert [h["user"]["username"] for h in holders] == ["binh"]


# =============================================================================
# ADMIN
# =============================================================================

class TestAdminApi:

    def test_non_admin_rejected(self, client, people, auth_headers):
        response = client.get("/admin/users", headers=auth_headers(people["reporter"]))

        assert response.status_code == 403

    def test_user_lifecycle(self, client, people, auth_headers):
        headers = auth_headers(people["admin"])

        created = client.post("/admin/users", json={"username": "minh", "name": "Lê Minh", "password": "abc123"},
                              headers=headers)
        assert created.status_code == 201
        duplicate = client.post("/admin/users", json={"username": "minh", "name": "X", "password": "abc123"},
                                headers=headers)
        assert duplicate.status_code == 400

        user_id = created.json()["id"]
        updated = client.put(f"/admin/users/{user_id}", json={"status": "disabled"}, headers=headers)
        assert updated.json()["status"] == "disabled"

        deleted = client.delete(f"/admin/users/{user_id}", headers=headers)
        assert deleted.json()["status"] == "deleted"

    def test_admin_cannot_delete_self(self, client, people, auth_headers):
        response = client.delete(f"/admin/users/{people['admin'].id}", headers=auth_headers(people["admin"]))

        assert response.status_code == 400

    def test_categories(self, client, people, auth_headers):
        headers = auth_headers(people["admin"])

        created = client.post("/admin/departments", json={"name": "Khoa Nội", "id": "d1"}, headers=headers)
        assert created.status_code == 201
        assert client.get("/admin/departments", headers=auth_headers(people["staff"])).json() == [
            {"id": "d1", "name": "Khoa Nội"}
        ]
        assert client.post("/admin/departments", json={"name": "Khoa Nội"},
                           headers=auth_headers(people["staff"])).status_code == 403

        client.delete("/admin/departments/d1", headers=headers)
        me = client.get("/auth/me", headers=auth_headers(people["staff"])).json()
        assert me["department_id"] is None

    def test_settings_validation(self, client, people, auth_headers):
        response = client.put("/admin/settings", json={"compliance_start_year": 2026, "compliance_end_year": 2020},
                              headers=auth_headers(people["admin"]))

        assert response.status_code == 400

    def test_shared_report_management(self, client, people, auth_headers):
        headers = auth_headers(people["admin"])
        link = client.post("/reports/share", json={"kind": "summary"}, headers=headers).json()

        listing = client.get("/admin/shared-reports", headers=headers).json()
        assert [item["id"] for item in listing] == [link["id"]]
        assert "token" not in listing[0]

        yesterday = (datetime.now(timezone.utc).date() - timedelta(days=1)).isoformat()
        assert client.put(f"/admin/shared-reports/{link['id']}/expiry", json={"expires_on": yesterday},
                          headers=headers).status_code == 400

        later = (datetime.now(timezone.utc).date() + timedelta(days=30)).isoformat()
        extended = client.put(f"/admin/shared-reports/{link['id']}/expiry", json={"expires_on": later},
                              headers=headers)
        assert extended.json()["expires_at"].startswith(later)

        assert client.delete(f"/admin/shared-reports/{link['id']}", headers=headers).json()["deleted_count"] == 1
        assert client.delete(f"/admin/shared-reports/{link['id']}", headers=headers).json()["deleted_count"] == 0

    def test_audit_log(self, client, people, auth_headers):
        headers = auth_headers(people["admin"])
        client.post("/admin/titles", json={"name": "Bác sĩ", "id": "1"}, headers=headers)

        entries = client.get("/admin/audit-logs", params={"action": "TITLE_CREATE"}, headers=headers).json()

        assert [e["target_name"] for e in entries] == ["Bác sĩ"]

    def test_ai_chat_without_key(self, client, people, auth_headers):
        response = client.post("/ai/chat", json={"message": "Xin chào"}, headers=auth_headers(people["staff"]))

        assert response.status_code == 503
