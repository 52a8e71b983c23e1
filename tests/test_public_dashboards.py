from __future__ import annotations

from datetime import date
from io import BytesIO

from fastapi.testclient import TestClient
from openpyxl import load_workbook
from sqlalchemy.orm import Session

from civiportal.models.entities import City
from civiportal.core.config import get_settings
from tests.factories import add_actual, add_budget, add_revenue, add_transaction, create_city

BASE = "/api/cities/springfield"


def _published_city(db: Session, **settings: object) -> City:
    flags = {
        "is_published": True,
        "enable_transactions": True,
        "enable_vendors": True,
        "enable_revenues": True,
    }
    flags.update(settings)
    city = create_city(db, **flags)
    add_budget(db, city, year=2025, department="Fire", amount="100", category="Personnel")
    add_budget(db, city, year=2025, department="Fire", amount="50", category="Equipment")
    add_budget(db, city, year=2024, department="Parks", amount="10")
    add_actual(db, city, year=2025, period="2024-08", fiscal_period=2, department="Fire", amount="120")
    return city


def test_unpublished_and_unknown_portals_are_hidden(client: TestClient, db_session: Session) -> None:
    create_city(db_session)

    assert client.get(f"{BASE}/overview").status_code == 404
    assert client.get("/api/cities/nowhere/overview").status_code == 404


def test_public_settings_expose_branding_and_modules(client: TestClient, db_session: Session) -> None:
    _published_city(db_session, enable_vendors=True, enable_transactions=False, tagline="Open books")

    payload = client.get(f"{BASE}/settings").json()

    assert payload["slug"] == "springfield"
    assert payload["tagline"] == "Open books"
    assert payload["modules"] == {"actuals": True, "transactions": False, "vendors": False, "revenues": True}
    assert payload["fiscal_year"]["label"] == "Fiscal year runs July 1 – June 30."
    assert "is_published" not in payload


def test_fiscal_years_and_overview_default_to_latest(client: TestClient, db_session: Session) -> None:
    _published_city(db_session)

    years = client.get(f"{BASE}/fiscal-years").json()
    assert years["years"] == [2025, 2024]
    assert years["latest"] == 2025

    overview = client.get(f"{BASE}/overview").json()
    assert overview["fiscal_year"] == 2025
    assert overview["totals"]["budget"] == "150.00"
    assert overview["totals"]["actuals"] == "120.00"
    assert overview["totals"]["variance"] == "-30.00"
    assert overview["totals"]["percent_spent"] == "80.00"
    assert overview["insights"] == []
    assert overview["top_departments"][0]["department_name"] == "Fire"

    older = client.get(f"{BASE}/overview", params={"year": 2024}).json()
    assert older["totals"]["budget"] == "10.00"


def test_overview_omits_disabled_modules(client: TestClient, db_session: Session) -> None:
    _published_city(db_session, enable_actuals=False, enable_revenues=False, enable_vendors=False)

    overview = client.get(f"{BASE}/overview").json()

    assert "actuals" not in overview["totals"]
    assert "insights" not in overview
    assert "revenue_sources" not in overview
    assert "top_vendors" not in overview


def test_departments_and_detail(client: TestClient, db_session: Session) -> None:
    _published_city(db_session)

    departments = client.get(f"{BASE}/departments").json()
    assert [item["department_name"] for item in departments["items"]] == ["Fire"]
    assert departments["items"][0]["percent_spent"] == "80.00"

    detail = client.get(f"{BASE}/departments/Fire", params={"year": 2025}).json()
    assert detail["department"]["budget"] == "150.00"
    assert [item["category"] for item in detail["categories"]] == ["Personnel", "Equipment", "Unspecified"]
    assert len(detail["monthly_actuals"]) == 12
    assert detail["monthly_actuals"][1] == {"fiscal_period": 2, "amount": "120.00"}

    assert client.get(f"{BASE}/departments/Library").status_code == 404


def test_unspecified_department_detail_collects_blank_departments(client: TestClient, db_session: Session) -> None:
    city = _published_city(db_session)
    add_transaction(db_session, city, txn_date=date(2024, 7, 1), year=2025, vendor="Acme", department=None, amount="10")
    add_transaction(db_session, city, txn_date=date(2024, 7, 2), year=2025, vendor="Acme", department="", amount="5")

    names = [item["department_name"] for item in client.get(f"{BASE}/departments").json()["items"]]
    assert "Unspecified" in names

    detail = client.get(f"{BASE}/departments/Unspecified", params={"year": 2025})
    assert detail.status_code == 200
    assert detail.json()["department"]["department_name"] == "Unspecified"
    assert detail.json()["top_vendors"][0]["total"] == "15.00"

    filtered = client.get(f"{BASE}/transactions", params={"department": "Unspecified"}).json()
    assert filtered["total"] == 2


def test_transactions_are_paged_and_searchable(client: TestClient, db_session: Session) -> None:
    city = _published_city(db_session)
    add_transaction(db_session, city, txn_date=date(2024, 7, 1), year=2025, vendor="Acme", department="Fire", amount="10")
    add_transaction(db_session, city, txn_date=date(2024, 7, 3), year=2025, vendor="Beta", department="Fire", amount="20")
    add_transaction(db_session, city, txn_date=date(2024, 7, 2), year=2025, vendor="Acme", department="Parks", amount="30")

    first = client.get(f"{BASE}/transactions", params={"page_size": 2}).json()
    assert first["total"] == 3
    assert [item["date"] for item in first["items"]] == ["2024-07-03", "2024-07-02"]

    second = client.get(f"{BASE}/transactions", params={"page_size": 2, "page": 2}).json()
    assert [item["vendor"] for item in second["items"]] == ["Acme"]

    searched = client.get(f"{BASE}/transactions", params={"q": "acme"}).json()
    assert searched["total"] == 2

    by_department = client.get(f"{BASE}/transactions", params={"department": "Parks"}).json()
    assert by_department["total"] == 1

    assert client.get(f"{BASE}/transactions", params={"page_size": 500}).status_code == 422


def test_vendors_and_revenues(client: TestClient, db_session: Session) -> None:
    city = _published_city(db_session)
    add_transaction(db_session, city, txn_date=date(2024, 7, 1), year=2025, vendor="Acme", department="Fire", amount="10")
    add_transaction(db_session, city, txn_date=date(2024, 9, 1), year=2025, vendor="Acme", department="Fire", amount="30")
    add_transaction(db_session, city, txn_date=date(2024, 8, 1), year=2025, vendor="Beta", department="Fire", amount="5")
    add_revenue(db_session, city, year=2025, category="Property Tax", amount="900")
    add_revenue(db_session, city, year=2025, category="Fees", amount="100")

    vendors = client.get(f"{BASE}/vendors").json()
    assert [item["vendor"] for item in vendors["items"]] == ["Acme", "Beta"]
    acme = vendors["items"][0]
    assert (acme["total"], acme["transaction_count"], acme["average"]) == ("40.00", 2, "20.00")
    assert (acme["first_date"], acme["last_date"]) == ("2024-07-01", "2024-09-01")

    revenues = client.get(f"{BASE}/revenues").json()
    assert revenues["total"] == "1000.00"
    assert [(item["source"], item["share_percent"]) for item in revenues["sources"]] == [
        ("Property Tax", "90.00"),
        ("Fees", "10.00"),
    ]


def test_disabled_modules_return_404(client: TestClient, db_session: Session) -> None:
    _published_city(db_session, enable_transactions=False, enable_revenues=False)

    assert client.get(f"{BASE}/transactions").status_code == 404
    # Vendors are built from transactions, so they follow that switch too.
    assert client.get(f"{BASE}/vendors").status_code == 404
    assert client.get(f"{BASE}/revenues").status_code == 404
    assert client.get(f"{BASE}/download/transactions").status_code == 404


def test_analytics_lists_years_newest_first(client: TestClient, db_session: Session) -> None:
    _published_city(db_session)

    years = client.get(f"{BASE}/analytics").json()["years"]

    assert [item["fiscal_year"] for item in years] == [2025, 2024]
    assert years[0]["budget_change_percent"] == "1400.00"


def test_csv_and_xlsx_downloads(client: TestClient, db_session: Session) -> None:
    _published_city(db_session)

    csv_response = client.get(f"{BASE}/download/budgets", params={"year": 2025})
    assert csv_response.status_code == 200
    assert 'filename="springfield-budgets-fy2025.csv"' in csv_response.headers["content-disposition"]
    lines = csv_response.text.strip().splitlines()
    assert lines[0].startswith("fiscal_year,department_name,amount")
    assert len(lines) == 3

    xlsx_response = client.get(f"{BASE}/download/actuals", params={"format": "xlsx"})
    assert xlsx_response.status_code == 200
    assert 'filename="springfield-actuals.xlsx"' in xlsx_response.headers["content-disposition"]
    sheet = load_workbook(BytesIO(xlsx_response.content)).active
    assert sheet.title == "actuals"
    assert sheet.max_row == 2

    assert client.get(f"{BASE}/download/budgets", params={"format": "pdf"}).status_code == 422


def _searchable_city(db: Session, **settings: object) -> City:
    city = _published_city(db, **settings)
    add_transaction(db, city, txn_date=date(2024, 7, 1), year=2025, vendor="ACME supply", department="Fire", amount="10", description="Hose 50% off")
    add_transaction(db, city, txn_date=date(2024, 8, 1), year=2025, vendor="Acme Supply", department="Fire", amount="30")
    add_transaction(db, city, txn_date=date(2024, 9, 1), year=2025, vendor="Beta", department="Parks", amount="5", description="Mowing")
    return city


def test_search_groups_matches_by_category(client: TestClient, db_session: Session) -> None:
    _searchable_city(db_session)

    payload = client.get(f"{BASE}/search", params={"q": "acme"}).json()

    assert payload["departments"] == []
    assert payload["vendors"] == [{"vendor": "Acme Supply", "total": "40.00", "transaction_count": 2}]
    assert payload["total_vendors"] == 1
    assert payload["total_transactions"] == 2
    assert [item["date"] for item in payload["transactions"]] == ["2024-08-01", "2024-07-01"]

    parks = client.get(f"{BASE}/search", params={"q": " PAR "}).json()
    assert parks["departments"] == [{"department_name": "Parks", "budget": "10.00", "actuals": "0.00"}]

    fire = client.get(f"{BASE}/search", params={"q": "fire", "year": 2025}).json()
    assert fire["departments"] == [{"department_name": "Fire", "budget": "150.00", "actuals": "120.00"}]
    assert fire["total_transactions"] == 2


def test_search_caps_results_and_ignores_short_queries(client: TestClient, db_session: Session) -> None:
    city = _searchable_city(db_session)
    for day in range(2, 6):
        add_transaction(db_session, city, txn_date=date(2024, 10, day), year=2025, vendor=f"Acme {day}", department="Fire", amount="1")

    payload = client.get(f"{BASE}/search", params={"q": "acme"}).json()
    assert len(payload["vendors"]) == 3
    assert payload["total_vendors"] == 5
    assert len(payload["transactions"]) == 3
    assert payload["total_transactions"] == 6

    short = client.get(f"{BASE}/search", params={"q": " a "}).json()
    assert (short["departments"], short["vendors"], short["transactions"]) == ([], [], [])
    assert short["total_transactions"] == 0


def test_search_treats_wildcards_literally(client: TestClient, db_session: Session) -> None:
    _searchable_city(db_session)

    assert client.get(f"{BASE}/search", params={"q": "%%"}).json()["total_transactions"] == 0
    assert client.get(f"{BASE}/search", params={"q": "__"}).json()["total_departments"] == 0
    assert client.get(f"{BASE}/search", params={"q": "50%"}).json()["total_transactions"] == 1
    assert client.get(f"{BASE}/transactions", params={"q": "_"}).json()["total"] == 0


def test_search_skips_disabled_modules(client: TestClient, db_session: Session) -> None:
    _searchable_city(db_session, enable_transactions=False, enable_actuals=False)

    payload = client.get(f"{BASE}/search", params={"q": "fire"}).json()

    assert payload["departments"] == [{"department_name": "Fire", "budget": "150.00"}]
    assert payload["vendors"] == [] and payload["transactions"] == []
    assert payload["total_transactions"] == 0


def test_download_count_reports_matching_rows(client: TestClient, db_session: Session) -> None:
    _published_city(db_session, enable_transactions=False)

    counted = client.get(f"{BASE}/download/count", params={"table": "budgets", "year": 2025})
    assert counted.status_code == 200
    assert counted.json() == {"table": "budgets", "fiscal_year": 2025, "row_count": 2}

    assert client.get(f"{BASE}/download/count", params={"table": "budgets"}).json()["row_count"] == 3
    assert client.get(f"{BASE}/download/count", params={"table": "transactions"}).status_code == 404
    assert client.get(f"{BASE}/download/count").status_code == 422


def test_downloads_are_rate_limited(client: TestClient, db_session: Session, monkeypatch) -> None:
    _published_city(db_session)
    monkeypatch.setattr(get_settings(), "export_rate_limit", "2/minute")

    assert client.get(f"{BASE}/download/budgets").status_code == 200
    assert client.get(f"{BASE}/download/actuals").status_code == 200

    limited = client.get(f"{BASE}/download/budgets")
    assert limited.status_code == 429
    assert limited.json() == {"detail": "Too many download requests. Please try again later."}

    other_user = client.get(f"{BASE}/download/budgets", headers={"X-Auth-Subject": "resident-1"})
    assert other_user.status_code == 200
