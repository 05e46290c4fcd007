# tests/test_cli.py
import pytest

from scripts.course_analytics import cli
from scripts.course_analytics.config import DatabaseConfig, PipelineConfig
from scripts.course_analytics.models import SUCCESS, CollectionOutcome, CollectionSummary
from scripts.course_analytics.pipeline import PipelineResult


@pytest.fixture
def captured(monkeypatch, tmp_path):
    calls = {}
    config = PipelineConfig(database=DatabaseConfig(url="postgresql://test"), data_dir=tmp_path)

    def fake_collect_and_store(config, credentials, selected, write_mode):
        calls.update(config=config, selected=selected, write_mode=write_mode)
        summary = CollectionSummary([CollectionOutcome("zoom_sessions", SUCCESS, 4)])
        return PipelineResult(run_id="r1", record_sets={}, collection=summary)

    monkeypatch.setattr(cli, "load_config", lambda: config)
    monkeypatch.setattr(cli, "collect_and_store", fake_collect_and_store)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)
    return calls


def test_run_with_profile(captured, capsys):
    assert cli.main(["run", "--profile", "weekly", "--mode", "append"]) == 0

    assert captured["selected"] == ["zoom_sessions"]
    assert captured["write_mode"] == "append"
    assert "COLLECTION SUMMARY" in capsys.readouterr().out


def test_run_with_sources_and_no_files(captured):
    assert cli.main(["run", "-s", "github_commits, posit_cloud", "--no-save-files"]) == 0

    assert captured["selected"] == ["github_commits", "posit_cloud"]
    assert captured["write_mode"] is None
    assert captured["config"].save_files is False


def test_configuration_error_returns_nonzero(monkeypatch):
    def broken():
        raise cli.ConfigurationError("COLLECTION_WRITE_MODE must be one of append, replace, upsert")

    monkeypatch.setattr(cli, "load_config", broken)
    monkeypatch.setattr(cli, "configure_logging", lambda level: None)

    assert cli.main(["run"]) == 1


def test_sources_and_profile_are_exclusive(captured):
    with pytest.raises(SystemExit):
        cli.main(["run", "-s", "github_commits", "--profile", "daily"])
