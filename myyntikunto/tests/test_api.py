import pytest
from unittest.mock import MagicMock
from fastapi.testclient import TestClient

from myyntikunto.main import app
from myyntikunto.api.dependencies import get_pipeline, get_db_service, get_status_registry
from myyntikunto.models.enriched import NormalizationQuestion, QuestionSet
from myyntikunto.pipeline.orchestrator import ValuationPipeline
from myyntikunto.services.db_service import DBService
from myyntikunto.services.pipeline_status import StatusRegistry

STATEMENT = {
    "revenue": 1_000_000,
    "personnel_costs": 400_000,
    "operating_profit": -50_000,
    "fixed_assets": 200_000,
    "current_assets": 300_000,
    "short_term_liabilities": 150_000,
    "long_term_liabilities": 250_000,
}

MULTIPLIERS = {
    "revenue": {"min": 0.5, "avg": 0.8, "max": 1.2},
    "evEbit": {"min": 4, "avg": 6, "max": 8},
}


@pytest.fixture
def client(tmp_path):
    llm = MagicMock()
    llm.call_logs = []

    async def mock_structured(*args, **kwargs):
        return QuestionSet(questions=[
            NormalizationQuestion(
                id="q1", category="owner_salary", question="Omistajan palkka?",
                identified_value=120_000, line_item="personnel_costs",
            ),
        ])

    async def mock_text(*args, **kwargs):
        return "Yhteenveto."

    llm.structured_completion = mock_structured
    llm.text_completion = mock_text

    db = DBService(f"sqlite:///{tmp_path}/api.db")
    registry = StatusRegistry()
    app.dependency_overrides[get_pipeline] = lambda: ValuationPipeline(llm, db)
    app.dependency_overrides[get_db_service] = lambda: db
    app.dependency_overrides[get_status_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, **extra):
    body = {"company_name": "Testi Oy", "statement": STATEMENT, "multipliers": MULTIPLIERS, "netDebt": 100_000}
    body.update(extra)
    response = client.post("/api/valuations", json=body)
    assert response.status_code == 200
    return response.json()


def test_calculate(client):
    response = client.post("/api/valuations/calculate", json={
        "statement": STATEMENT, "adjustments": [], "multipliers": MULTIPLIERS, "netDebt": 100_000,
    })
    assert response.status_code == 200
    data = response.json()
    assert data["valuationRange"]["high"] == pytest.approx(1_100_000)
    assert data["probabilityWeighted"] is None
    ebit = next(r for r in data["methodResults"] if r["method"] == "ev_ebit")
    assert ebit["available"] is False


def test_calculate_rejects_malformed_statement(client):
    statement = {k: v for k, v in STATEMENT.items() if k != "current_assets"}
    response = client.post("/api/valuations/calculate", json={"statement": statement, "multipliers": MULTIPLIERS})
    assert response.status_code == 422


def test_calculate_rejects_unordered_multipliers(client):
    multipliers = dict(MULTIPLIERS, revenue={"min": 1.0, "avg": 0.5, "max": 2.0})
    response = client.post("/api/valuations/calculate", json={"statement": STATEMENT, "multipliers": multipliers})
    assert response.status_code == 422


def test_calculate_rejects_invalid_discount_rates(client):
    projection = {
        "revenue_projections": [1_000_000, 1_100_000],
        "ebitda_margins": [0.1, 0.1],
        "wacc": -1,
        "terminal_growth_rate": -2,
    }
    response = client.post("/api/valuations/calculate", json={
        "statement": STATEMENT, "multipliers": MULTIPLIERS,
        "scenarios": {"pessimistic": projection, "base": projection, "optimistic": projection},
    })
    assert response.status_code == 422


def test_questions(client):
    response = client.post("/api/valuations/questions", json={"company_name": "Testi Oy", "statement": STATEMENT})
    assert response.status_code == 200
    assert response.json()["questions"][0]["category"] == "owner_salary"


def test_create_get_list_delete(client):
    report = _create(client)
    assert report["narrative"] == "Yhteenveto."

    assert client.get(f"/api/valuations/{report['id']}").status_code == 200
    listing = client.get("/api/valuations").json()
    assert listing[0]["id"] == report["id"]

    audit = client.get(f"/api/valuations/{report['id']}/audit-log").json()
    assert any(s["step_name"] == "valuate" for s in audit["pipeline_steps"])

    assert client.delete(f"/api/valuations/{report['id']}").status_code == 200
    assert client.get(f"/api/valuations/{report['id']}").status_code == 404
    assert client.delete(f"/api/valuations/{report['id']}").status_code == 404


def test_revalue(client):
    report = _create(client)
    response = client.post(f"/api/valuations/{report['id']}/revalue", json={"multipliers": {
        "revenue": {"min": 1.0, "avg": 1.5, "max": 2.0},
        "evEbit": {"min": 4, "avg": 6, "max": 8},
    }})
    assert response.status_code == 200
    revalued = response.json()
    assert revalued["id"] != report["id"]
    assert revalued["parent_id"] == report["id"]
    assert revalued["valuation"]["valuation_range"]["high"] == pytest.approx(1_900_000)

    missing = client.post("/api/valuations/nope/revalue", json={"multipliers": MULTIPLIERS})
    assert missing.status_code == 404


def test_revalue_what_if(client):
    report = _create(client)
    response = client.post(f"/api/valuations/{report['id']}/revalue", json={
        "selectedMethods": ["ev_ebit"],
        "futureScenario": {"revenueGrowth": 0.1, "targetEbitMargin": 0.1},
    })
    assert response.status_code == 200
    valuation = response.json()["valuation"]
    assert valuation["normalized_statement"]["operating_profit"] == pytest.approx(110_000)
    revenue = next(r for r in valuation["method_results"] if r["method"] == "revenue")
    assert revenue["unavailable_reason"] == "Method not selected"
    # 110k EBIT at 8x minus 100k net debt
    assert valuation["valuation_range"]["high"] == pytest.approx(780_000)

    bad = client.post(f"/api/valuations/{report['id']}/revalue", json={"selectedMethods": ["dividend"]})
    assert bad.status_code == 422


def test_share_link(client):
    report = _create(client)
    response = client.post(f"/api/valuations/{report['id']}/share", json={"recipient_email": "ostaja@example.fi"})
    assert response.status_code == 200
    token = response.json()["token"]

    shared = client.get(f"/api/shared/{token}")
    assert shared.status_code == 200
    assert shared.json()["id"] == report["id"]

    assert client.get("/api/shared/unknown").status_code == 404
    assert client.post("/api/valuations/nope/share", json={}).status_code == 404


def test_assessment_flow(client):
    response = client.post("/api/valuations/assessments", json={
        "company_name": "Testi Oy", "statement": STATEMENT, "multipliers": MULTIPLIERS,
    })
    assert response.status_code == 200
    assessment = response.json()
    assert assessment["state"] == "awaiting_input"
    assert assessment["questions"][0]["id"] == "q1"

    response = client.post(f"/api/valuations/assessments/{assessment['id']}/answers", json={
        "answers": [{"question_id": "q1", "normalized_value": 20_000}],
    })
    assert response.status_code == 200
    assert response.json()["valuation"]["normalized_statement"]["operating_profit"] == 50_000

    state = client.get(f"/api/valuations/assessments/{assessment['id']}").json()
    assert state["state"] == "complete"
    assert state["report_id"] == response.json()["id"]

    again = client.post(f"/api/valuations/assessments/{assessment['id']}/answers", json={"answers": []})
    assert again.status_code == 409


def test_unknown_assessment(client):
    assert client.get("/api/valuations/assessments/nope").status_code == 404
    response = client.post("/api/valuations/assessments/nope/answers", json={"answers": []})
    assert response.status_code == 404


def test_upload_statement_finnish_csv(client):
    csv_text = (
        "Tilikausi;2024\n"
        "Liikevaihto;1 250 000,00\n"
        "Henkilöstökulut;-480 000\n"
        "Liikevoitto (-tappio);95 500\n"
        "Pysyvät vastaavat yhteensä;210 000\n"
        "Vaihtuvat vastaavat yhteensä;390 000\n"
        "Lyhytaikainen vieras pääoma;150 000\n"
        "Pitkäaikainen vieras pääoma;120 000\n"
    )
    response = client.post(
        "/api/valuations/upload-statement",
        files={"file": ("tilinpaatos.csv", csv_text.encode("utf-8"), "text/csv")},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["fiscal_year"] == 2024
    assert data["revenue"] == 1_250_000
    assert data["personnel_costs"] == 480_000
    assert data["operating_profit"] == 95_500
    assert data["materials"] is None


def test_upload_statement_wide_csv(client):
    csv_text = (
        "revenue,operating_profit,fixed_assets,current_assets,short_term_liabilities,long_term_liabilities\n"
        "500000,40000,100000,150000,80000,60000\n"
    )
    response = client.post(
        "/api/valuations/upload-statement",
        files={"file": ("statement.csv", csv_text.encode("utf-8"), "text/csv")},
    )
    assert response.status_code == 200
    assert response.json()["long_term_liabilities"] == 60_000


def test_upload_statement_json(client):
    import json
    response = client.post(
        "/api/valuations/upload-statement",
        files={"file": ("statement.json", json.dumps(STATEMENT).encode(), "application/json")},
    )
    assert response.status_code == 200
    assert response.json()["operating_profit"] == -50_000


def test_upload_statement_errors(client):
    incomplete = "Liikevaihto;100 000\n"
    response = client.post(
        "/api/valuations/upload-statement",
        files={"file": ("vajaa.csv", incomplete.encode("utf-8"), "text/csv")},
    )
    assert response.status_code == 400

    response = client.post(
        "/api/valuations/upload-statement",
        files={"file": ("statement.xlsx", b"binary", "application/octet-stream")},
    )
    assert response.status_code == 400

    response = client.post(
        "/api/valuations/upload-statement",
        files={"file": ("garbage.csv", b"foo;bar\nbaz;qux\n", "text/csv")},
    )
    assert response.status_code == 400
