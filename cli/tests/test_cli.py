"""Tests for cli/cli/app.py -- the salonmeter operator CLI.

Uses typer.testing.CliRunner against a real SQLite usage store.  JSON
output is read from stdout; Rich output goes to stderr.
"""

from __future__ import annotations

import json

from typer.testing import CliRunner

from cli.app import app

runner = CliRunner()


def _invoke(db_url: str, *args: str):
    return runner.invoke(app, ["--database-url", db_url, *args])


# ---------------------------------------------------------------------------
# init-db / add-tenant
# ---------------------------------------------------------------------------


class TestInitDb:
    def test_creates_store(self, db_url, db_path) -> None:
        result = _invoke(db_url, "init-db")
        assert result.exit_code == 0, result.output
        assert db_path.exists()

    def test_idempotent(self, db_url) -> None:
        assert _invoke(db_url, "init-db").exit_code == 0
        assert _invoke(db_url, "init-db").exit_code == 0


class TestAddTenant:
    def test_add_then_overview(self, db_url) -> None:
        _invoke(db_url, "init-db")
        result = _invoke(db_url, "add-tenant", "salon-1", "--tier", "growth", "--name", "Salon One")
        assert result.exit_code == 0, result.output

        overview = _invoke(db_url, "--json", "overview", "salon-1")
        assert json.loads(overview.stdout)["tier"] == "growth"

    def test_unknown_tier_rejected(self, db_url) -> None:
        _invoke(db_url, "init-db")
        result = _invoke(db_url, "add-tenant", "salon-1", "--tier", "platinum")
        assert result.exit_code == 3


# ---------------------------------------------------------------------------
# Scheduled jobs
# ---------------------------------------------------------------------------


class TestJobs:
    def test_aggregate_json(self, db_url, seed_store) -> None:
        seed_store({"salon-1": "starter", "salon-2": "scale"})
        result = runner.invoke(app, ["--json", "--database-url", db_url, "aggregate"])
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"tenants_processed": 2, "metrics_written": 16, "failures": {}}

    def test_aggregate_human_output(self, db_url, seed_store) -> None:
        seed_store({"salon-1": "starter"})
        result = _invoke(db_url, "aggregate")
        assert result.exit_code == 0
        assert "Aggregated" in result.output

    def test_sweep_without_anomalies(self, db_url, seed_store) -> None:
        seed_store({"salon-1": "starter"})
        result = _invoke(db_url, "--json", "sweep")
        assert result.exit_code == 0
        assert json.loads(result.stdout) == {}

    def test_jobs_json(self, db_url, seed_store) -> None:
        seed_store({"salon-1": "growth"})
        result = _invoke(db_url, "--json", "jobs")
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {"usage_aggregation": "ok", "anomaly_sweep": "ok"}

    def test_jobs_exit_1_when_a_job_fails(self, tmp_path) -> None:
        # Tables were never created, so the rollup cannot list tenants.
        result = _invoke(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}", "--json", "jobs")
        assert result.exit_code == 1
        assert json.loads(result.stdout)["usage_aggregation"] == "failed"


# ---------------------------------------------------------------------------
# Tenant inspection
# ---------------------------------------------------------------------------


class TestInspection:
    def test_overview_counts_usage(self, db_url, seed_store) -> None:
        seed_store({"salon-1": "starter"}, {"salon-1": {"booking.created": 7}})
        result = _invoke(db_url, "--json", "overview", "salon-1")
        assert result.exit_code == 0, result.output
        quotas = {q["event_type"]: q for q in json.loads(result.stdout)["quotas"]}
        assert quotas["booking.created"]["used"] == 7
        assert quotas["booking.created"]["remaining"] == 93

    def test_overview_human_output(self, db_url, seed_store) -> None:
        seed_store({"salon-1": "starter"})
        result = _invoke(db_url, "overview", "salon-1")
        assert result.exit_code == 0
        assert "Bookings" in result.output

    def test_summary_json(self, db_url, seed_store) -> None:
        seed_store({"salon-1": "starter"})
        result = _invoke(db_url, "--json", "summary", "salon-1")
        assert result.exit_code == 0, result.output
        body = json.loads(result.stdout)
        assert body["tenant_id"] == "salon-1"
        assert body["alerts"] == []

    def test_store_unavailable_exits_3(self, tmp_path) -> None:
        # A directory cannot be opened as a SQLite database.
        result = _invoke(f"sqlite+aiosqlite:///{tmp_path}", "overview", "salon-1")
        assert result.exit_code == 3
        assert "Usage store unavailable" in result.output


class TestGlobalOptions:
    def test_no_args_shows_help(self) -> None:
        result = runner.invoke(app, [])
        assert "init-db" in result.output
        assert "overview" in result.output
