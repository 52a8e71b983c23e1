from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import Session

from civiportal.models.entities import ActualLine, UserRole
from tests.factories import city_admin_headers, create_city

BASE = "/api/admin/cities/springfield"


def test_viewer_reads_settings_with_fiscal_label(client: TestClient, db_session: Session) -> None:
    city = create_city(db_session)
    headers = city_admin_headers(db_session, city, role=UserRole.VIEWER)

    response = client.get(f"{BASE}/settings", headers=headers)

    assert response.status_code == 200
    payload = response.json()
    assert payload["city_name"] == "Springfield"
    assert payload["is_published"] is False
    assert payload["enable_actuals"] is True
    assert payload["fiscal_year_labeling"] == "end_year"
    assert payload["fiscal_year_display"] == "Fiscal year runs July 1 – June 30."

    patch = client.patch(f"{BASE}/settings", json={"tagline": "x"}, headers=headers)
    assert patch.status_code == 403


def test_patch_applies_only_sent_fields(client: TestClient, db_session: Session) -> None:
    city = create_city(db_session, tagline="Old", logo_url="https://example.test/logo.png")
    headers = city_admin_headers(db_session, city)

    response = client.patch(
        f"{BASE}/settings",
        json={
            "tagline": "  Open books  ",
            "logo_url": "",
            "city_name": None,
            "enable_revenues": True,
            "primary_color": "#123abc",
        },
        headers=headers,
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["tagline"] == "Open books"
    assert payload["logo_url"] is None
    assert payload["city_name"] == "Springfield"
    assert payload["enable_revenues"] is True
    assert payload["primary_color"] == "#123abc"
    assert payload["enable_actuals"] is True


def test_patch_rejects_invalid_values(client: TestClient, db_session: Session) -> None:
    city = create_city(db_session)
    headers = city_admin_headers(db_session, city)

    assert client.patch(f"{BASE}/settings", json={"primary_color": "blue"}, headers=headers).status_code == 422
    assert client.patch(f"{BASE}/settings", json={"fiscal_year_start_month": 13}, headers=headers).status_code == 422
    assert client.patch(f"{BASE}/settings", json={"fiscal_year_start_day": 0}, headers=headers).status_code == 422


def test_fiscal_calendar_change_applies_to_later_uploads(client: TestClient, db_session: Session) -> None:
    city = create_city(db_session)
    headers = city_admin_headers(db_session, city)

    response = client.patch(
        f"{BASE}/settings",
        json={"fiscal_year_start_month": 1, "fiscal_year_start_day": 1},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["fiscal_year_display"].startswith("Fiscal year aligns with the calendar year")

    upload = client.post(
        f"{BASE}/upload",
        json={"table": "actuals", "records": [{"period": "2027-08", "department_name": "Fire", "amount": 5}]},
        headers=headers,
    )
    assert upload.status_code == 201
    row = db_session.scalar(select(ActualLine))
    assert (row.fiscal_year, row.fiscal_period) == (2027, 8)


def test_publish_toggles_public_visibility(client: TestClient, db_session: Session) -> None:
    city = create_city(db_session)
    headers = city_admin_headers(db_session, city)

    assert client.get("/api/cities/springfield/settings").status_code == 404

    published = client.post(f"{BASE}/publish", json={"is_published": True}, headers=headers)
    assert published.status_code == 200
    assert published.json() == {"city": "springfield", "is_published": True}
    assert client.get("/api/cities/springfield/settings").status_code == 200

    client.post(f"{BASE}/publish", json={"is_published": False}, headers=headers)
    assert client.get("/api/cities/springfield/settings").status_code == 404
