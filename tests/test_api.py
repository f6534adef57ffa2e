"""
API tests for the ingest, approval and schedule endpoints.

The database, ledger and survey panel are replaced through
dependency_overrides; startup table creation is patched out.
"""
import pytest
from datetime import datetime
from unittest.mock import patch

from fastapi.testclient import TestClient

from pydantic import ValidationError

from tests.helpers import SURVEY_HEADERS, StaticAdapter
from uncertainty_index.api.v1.deps import get_ledger, get_survey_panel
from uncertainty_index.core.database import get_db
from uncertainty_index.core.models import (
    ApprovalStatus,
    IngestRun,
    IngestRunStatus,
    SourceStatistic,
    SourceStatus,
    SourceValue,
)
from uncertainty_index.core.schemas import ManualValuesRequest, MonthlyIngestRequest
from uncertainty_index.main import app
from uncertainty_index.sources.base import AdapterResult
from uncertainty_index.sources.registry import SurveyPanel


@pytest.fixture
def panel():
    return SurveyPanel(adapters=[
        StaticAdapter(name, AdapterResult.success(value)) for name, value in zip(SURVEY_HEADERS, (100.0, 50.0, 9.0))
    ])


@pytest.fixture
def client(clean_env, monkeypatch, test_db, ledger, panel):
    """Test client with the database, ledger and panel overridden."""
    monkeypatch.setenv("DATABASE_URL", "sqlite://")

    def override_get_db():
        try:
            yield test_db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ledger] = lambda: ledger
    app.dependency_overrides[get_survey_panel] = lambda: panel
    with patch("uncertainty_index.main.create_tables"):
        with TestClient(app) as c:
            yield c
    app.dependency_overrides.clear()


def seed_run(db, month="Feb 2026", names=("Survey A", "Survey B")):
    run = IngestRun(month=month, status=IngestRunStatus.SUCCESS, started_at=datetime(2026, 3, 1, 9, 0))
    for name in names:
        run.sources.append(SourceValue(
            source_name=name, source_url="https://example.com", value=10.0, previous_value=8.0, delta=2.0,
        ))
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


@pytest.mark.unit
class TestServiceEndpoints:
    def test_root(self, client):
        assert client.get("/").json()["service"] == "Uncertainty Index Ingestion Service"

    def test_health_connected(self, client):
        with patch("uncertainty_index.main.check_connection"):
            data = client.get("/health").json()
        assert data == {"status": "healthy", "service": "running", "database": "connected"}

    def test_health_degraded(self, client):
        with patch("uncertainty_index.main.check_connection", side_effect=RuntimeError("refused")):
            data = client.get("/health").json()
        assert data["status"] == "degraded"
        assert data["database"] == "error: refused"


@pytest.mark.unit
class TestIngestEndpoints:
    def test_monthly_ingest_appends_row(self, client, test_db, fake_backend):
        response = client.post("/api/v1/ingest/monthly", json={"month": "Dec 2025"})

        assert response.status_code == 200
        body = response.json()
        assert body["month"] == "Dec 2025"
        assert body["warnings"] == []

        run = test_db.get(IngestRun, body["ingest_run_id"])
        assert run.status == IngestRunStatus.SUCCESS
        assert sorted(s.source_name for s in run.sources) == SURVEY_HEADERS
        assert fake_backend.cell("Data", "Dec 2025", "Survey C") == "9"

    def test_monthly_ingest_rejects_bad_label(self, client):
        response = client.post("/api/v1/ingest/monthly", json={"month": "Smarch 2026"})
        assert response.status_code == 422

    def test_monthly_ingest_loads_statistics_from_meta(self, client, test_db, panel):
        panel.get("Survey A").result = AdapterResult.success(130.0)

        response = client.post("/api/v1/ingest/monthly", json={"month": "Dec 2025"})

        assert response.status_code == 200
        assert response.json()["warnings"] == ["Survey A: Outlier detected (z=6.00)"]
        stats = {s.source_name: s for s in test_db.query(SourceStatistic).all()}
        assert sorted(stats) == ["Survey A", "Survey B"]
        assert stats["Survey A"].stdev == 5.0

    def test_monthly_ingest_survives_unreadable_meta(self, client, test_db, fake_backend):
        fake_backend.fail_reads.add("Meta")

        response = client.post("/api/v1/ingest/monthly", json={"month": "Dec 2025"})

        assert response.status_code == 200
        assert response.json()["warnings"] == []
        assert test_db.query(SourceStatistic).count() == 0

    def test_monthly_ingest_failure_marks_run_failed(self, client, test_db, fake_backend):
        fake_backend.fail_reads.add("Data")

        response = client.post("/api/v1/ingest/monthly", json={"month": "Dec 2025"})

        assert response.status_code == 500
        assert response.json()["detail"] == "Read of Data failed"
        run = test_db.query(IngestRun).one()
        assert run.status == IngestRunStatus.FAILED
        assert run.message == "Read of Data failed"

    def test_backfill_limits(self, client):
        assert client.post("/api/v1/ingest/backfill", json={"months": 0}).status_code == 422

        response = client.post("/api/v1/ingest/backfill", json={"months": 25})
        assert response.status_code == 400
        assert "between 1 and 24" in response.json()["detail"]

    def test_backfill_single_month(self, client):
        response = client.post("/api/v1/ingest/backfill", json={"months": 1})

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert len(body["results"]) == 1
        assert body["results"][0]["status"] == "SUCCESS"

    def test_manual_values(self, client, fake_backend):
        response = client.post(
            "/api/v1/ingest/manual",
            json={"month": "Feb 2026", "values": {"Survey B": 47.5, "Survey A": "102"}},
        )

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "month": "Feb 2026", "updated": ["Survey A", "Survey B"]}
        assert fake_backend.cell("Data", "Feb 2026", "Survey B") == "47.5"

    def test_manual_values_match_existing_row_for_any_label_form(self, client, fake_backend):
        for label in ("February 2026", "2026-02"):
            response = client.post("/api/v1/ingest/manual", json={"month": label, "values": {"Survey C": 9}})
            assert response.status_code == 200
            assert response.json()["month"] == "Feb 2026"

        assert [row[0] for row in fake_backend.sheets["Data"][1:]] == ["Jan 2026", "Feb 2026"]
        assert fake_backend.cell("Data", "Feb 2026", "Survey C") == "9"

    def test_manual_values_require_values(self, client):
        response = client.post("/api/v1/ingest/manual", json={"month": "Feb 2026", "values": {}})
        assert response.status_code == 422

    def test_manual_values_ledger_failure(self, client, fake_backend):
        fake_backend.fail_writes = True

        response = client.post("/api/v1/ingest/manual", json={"month": "Feb 2026", "values": {"Survey A": 1}})

        assert response.status_code == 500

    def test_history(self, client, test_db):
        seed_run(test_db)

        response = client.get("/api/v1/ingest/history?limit=3")

        assert response.status_code == 200
        runs = response.json()["runs"]
        assert len(runs) == 1
        assert runs[0]["month"] == "Feb 2026"
        assert len(runs[0]["sources"]) == 2

    def test_history_limit_bounds(self, client):
        assert client.get("/api/v1/ingest/history?limit=0").status_code == 400
        assert client.get("/api/v1/ingest/history?limit=51").status_code == 400


@pytest.mark.unit
class TestApprovalEndpoints:
    def test_month_not_ingested(self, client):
        response = client.get("/api/v1/approvals/month", params={"month": "Feb 2026"})

        assert response.status_code == 404
        assert response.json()["detail"] == {"month": "Feb 2026", "snapshot": None, "gate": "NOT_RUN"}

    def test_month_snapshot_pending(self, client, test_db):
        seed_run(test_db)

        body = client.get("/api/v1/approvals/month", params={"month": "Feb 2026"}).json()

        assert body["gate"] == "PENDING_APPROVAL"
        assert body["reason"] == "Approval pending for 2 source values."
        assert body["snapshot"]["pending_count"] == 2
        assert [r["source_name"] for r in body["snapshot"]["rows"]] == ["Survey A", "Survey B"]
        assert body["snapshot"]["rows"][0]["due_label"] == "No release date configured"

    def test_month_label_is_normalized(self, client, test_db):
        seed_run(test_db)

        for label in ("February 2026", "2026-02-01"):
            response = client.get("/api/v1/approvals/month", params={"month": label})
            assert response.status_code == 200
            assert response.json()["month"] == "Feb 2026"

    def test_unparseable_month_label(self, client):
        response = client.get("/api/v1/approvals/month", params={"month": "Smarch 2026"})
        assert response.status_code == 400

    def test_approve_all_opens_gate(self, client, test_db):
        run = seed_run(test_db)

        for source in run.sources:
            response = client.post(
                "/api/v1/approvals/source",
                json={"source_value_id": source.id, "action": "approve", "actor": "ana@example.com"},
            )
            assert response.status_code == 200
            assert response.json()["approval_status"] == ApprovalStatus.APPROVED.value

        body = client.get("/api/v1/approvals/month", params={"month": "Feb 2026"}).json()
        assert body["gate"] == "APPROVED"
        assert body["reason"] is None

    def test_edit_writes_ledger(self, client, test_db, fake_backend):
        run = seed_run(test_db, names=("Survey A",))

        response = client.post(
            "/api/v1/approvals/source",
            json={"source_value_id": run.sources[0].id, "action": "edit", "value": 104.5, "actor": "ana@example.com"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["value"] == 104.5
        assert body["approval_status"] == "PENDING"
        assert body["status"] == SourceStatus.SUCCESS.value
        assert fake_backend.cell("Data", "Feb 2026", "Survey A") == "104.5"

    def test_invalid_action(self, client, test_db):
        run = seed_run(test_db)

        response = client.post(
            "/api/v1/approvals/source", json={"source_value_id": run.sources[0].id, "action": "archive"}
        )

        assert response.status_code == 400

    def test_edit_requires_numeric_value(self, client, test_db):
        run = seed_run(test_db)

        response = client.post(
            "/api/v1/approvals/source",
            json={"source_value_id": run.sources[0].id, "action": "edit", "value": "lots"},
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "value must be numeric"

    def test_unknown_source_value(self, client):
        response = client.post("/api/v1/approvals/source", json={"source_value_id": 404, "action": "approve"})
        assert response.status_code == 404


@pytest.mark.unit
class TestScheduleEndpoints:
    def test_list_defaults_for_unconfigured_sources(self, client):
        schedules = client.get("/api/v1/source-schedules").json()["schedules"]

        assert [s["source_name"] for s in schedules] == SURVEY_HEADERS
        assert all(s["configured"] is False for s in schedules)
        assert schedules[0]["advance_months"] == 1

    def test_upsert_schedule(self, client):
        response = client.post(
            "/api/v1/source-schedules",
            json={"source_name": "Survey B", "advance_months": 3, "next_expected_release_date": "2026-04-15"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["advance_months"] == 3
        assert body["next_expected_release_date"] == "2026-04-15"
        assert body["source_url"] == "https://example.com/survey-b"

        listed = {s["source_name"]: s for s in client.get("/api/v1/source-schedules").json()["schedules"]}
        assert listed["Survey B"]["configured"] is True

    def test_upsert_unknown_source(self, client):
        response = client.post(
            "/api/v1/source-schedules",
            json={"source_name": "Nope", "advance_months": 1, "next_expected_release_date": "2026-04-15"},
        )
        assert response.status_code == 404

    def test_update_weight(self, client, test_db, fake_backend):
        response = client.post("/api/v1/weights", json={"survey": "Survey A", "weight": 0.6})

        assert response.status_code == 200
        assert response.json()["weight"] == 0.6
        assert fake_backend.cell("Meta", "Survey A", "Weight") == "0.6"
        assert test_db.query(SourceStatistic).filter_by(source_name="Survey A").one().weight == 0.6

    def test_update_weight_unknown_survey(self, client):
        response = client.post("/api/v1/weights", json={"survey": "Survey Z", "weight": 0.1})
        assert response.status_code == 500


@pytest.mark.unit
class TestMonthLabels:
    @pytest.mark.parametrize("raw", ["Feb 2026", " February 2026 ", "2026-02", "2026-02-01", "02/01/2026"])
    def test_labels_are_canonical(self, raw):
        assert ManualValuesRequest(month=raw, values={"Survey C": 9}).month == "Feb 2026"
        assert MonthlyIngestRequest(month=raw).month == "Feb 2026"

    def test_blank_monthly_label_means_current_month(self):
        assert MonthlyIngestRequest(month="  ").month is None

    def test_blank_manual_label_rejected(self):
        with pytest.raises(ValidationError):
            ManualValuesRequest(month=" ", values={"Survey C": 9})
