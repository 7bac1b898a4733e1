"""Tests for the command-line entry point."""

import logging

import pytest

from resultcheck import run_checker as cli
from resultcheck.orchestrator import RunReport
from resultcheck.subjects import Session, Stats


@pytest.fixture
def input_csv(tmp_path):
    path = tmp_path / "input.csv"
    path.write_text(
        "UIN,Nationality,Passport Number,Name\n"
        "S1234567D,SG,,Alice\n"
        "T1234567J,SG,,Bob\n"
    )
    return path


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setenv("RESULTS_BASE_URL", "https://results.example.com/v2")
    monkeypatch.setenv("RESULTS_API_KEY", "test-key-12345")


class TestRunChecker:
    """Test run_checker()."""

    def test_dry_run_makes_no_requests(self, configured, input_csv, tmp_path, monkeypatch):
        async def boom(*args, **kwargs):
            raise AssertionError("retrieve_results should not run")

        monkeypatch.setattr(cli, "retrieve_results", boom)

        code = cli.run_checker([str(input_csv), "--dry-run", "--output-dir", str(tmp_path / "out")])

        assert code == 0
        assert not (tmp_path / "out").exists()

    def test_full_run_exports(self, configured, input_csv, tmp_path, monkeypatch):
        seen = {}

        async def fake_retrieve(session, client, on_progress=None):
            seen["concurrency"] = client.settings.concurrency_limit
            seen["start"] = client.settings.start_timestamp
            for subject in session.subjects.values():
                subject.store_result({"results": [{"result": "NEGATIVE"}]})
            return RunReport()

        monkeypatch.setattr(cli, "retrieve_results", fake_retrieve)
        out = tmp_path / "out"

        code = cli.run_checker([
            str(input_csv), "--output-dir", str(out), "--format", "csv",
            "--concurrency", "3", "--start-timestamp", "2026-01-01",
        ])

        assert code == 0
        assert seen == {"concurrency": 3, "start": "2026-01-01"}
        files = list(out.glob("status-*.csv"))
        assert len(files) == 1
        assert "NEGATIVE" in files[0].read_text()

    def test_bad_base_url_exits_1(self, input_csv, monkeypatch):
        monkeypatch.setenv("RESULTS_BASE_URL", "https://results.example.com/v1")
        monkeypatch.setenv("RESULTS_API_KEY", "test-key-12345")

        assert cli.run_checker([str(input_csv), "--dry-run"]) == 1

    def test_missing_input_exits_1(self, configured, tmp_path):
        assert cli.run_checker([str(tmp_path / "missing.xlsx")]) == 1

    def test_bad_concurrency_override_exits_1(self, configured, input_csv):
        assert cli.run_checker([str(input_csv), "--dry-run", "--concurrency", "0"]) == 1


class TestLogResultSummary:
    """Test log_result_summary()."""

    def test_lists_every_counter(self, caplog):
        session = Session()
        session.stats = Stats(retrieved=3, with_test_results=3, positive_test_results=1, negative_test_results=2)

        with caplog.at_level(logging.INFO, logger="resultcheck.run_checker"):
            cli.log_result_summary(session)

        assert "Retrieved 3 of 0" in caplog.text
        for name in Stats().as_dict():
            assert name in caplog.text
