"""
Tests for the comerws-search command line.
"""

import io
import logging

import pytest
from click.testing import CliRunner

from comerws.bin import comerws_cli
from comerws.pipeline import search_job
from comerws.test.conftest import RecordingRunner


@pytest.fixture
def job(tmp_path):
    """Input, options and backend configuration of a one-query COMER job."""
    db_dir = tmp_path / "comer_dbs"
    db_dir.mkdir()
    (db_dir / "pdb70.bin").write_text("")
    config_file = tmp_path / "backend.yaml"
    config_file.write_text(f"databases:\n  comer:\n    - {db_dir}\n")
    options = tmp_path / "job1.options"
    options.write_text("comer_db = pdb70\n")
    input_file = tmp_path / "job1.in"
    input_file.write_text(">q\nMKV\n")
    return input_file, options, config_file


@pytest.fixture
def log_stream(monkeypatch):
    """Stream behind the package logger's handlers, restored afterwards."""
    logger = logging.getLogger("comerws")
    stream = io.StringIO()
    saved = [(handler, handler.level) for handler in logger.handlers]
    saved_level = logger.level
    for handler, _ in saved:
        monkeypatch.setattr(handler, "stream", stream)
    yield stream
    for handler, level in saved:
        handler.setLevel(level)
    logger.setLevel(saved_level)


def run_with_fake_tools(monkeypatch):
    def run(paths, settings, method, no_profile, no_search):
        return search_job.run_search_job(
            paths, settings, method, no_profile, no_search, runner=RecordingRunner()
        )

    monkeypatch.setattr(comerws_cli, "run_search_job", run)


def test_paths_and_exit_code(tmp_path, monkeypatch):
    input_file = tmp_path / "job1.in"
    input_file.write_text(">q\nMKV\n")
    calls = []

    def fake_run(paths, settings, method, no_profile, no_search):
        calls.append((paths, method, no_profile, no_search))
        return 1

    monkeypatch.setattr(comerws_cli, "run_search_job", fake_run)
    result = CliRunner().invoke(
        comerws_cli.main,
        ["-i", str(input_file), "-m", "cother", "--no-search",
         "--results-list", str(tmp_path / "r.lst")],
    )

    assert result.exit_code == 1
    [(paths, method, no_profile, no_search)] = calls
    assert method == "cother"
    assert no_search and not no_profile
    assert paths.manifest == tmp_path / "r.lst"
    assert paths.archive == tmp_path / "job1__cother_out.tar.gz"


def test_verbose_logs_scheduling_and_states(job, monkeypatch, log_stream):
    input_file, options, config_file = job
    run_with_fake_tools(monkeypatch)

    result = CliRunner().invoke(
        comerws_cli.main,
        ["-i", str(input_file), "-o", str(options), "-c", str(config_file), "-v"],
    )

    assert result.exit_code == 0
    output = log_stream.getvalue()
    assert "#queries= 1" in output
    assert "Query No.0: profile_construct" in output


def test_default_verbosity_hides_debug(job, monkeypatch, log_stream):
    input_file, options, config_file = job
    run_with_fake_tools(monkeypatch)

    result = CliRunner().invoke(
        comerws_cli.main,
        ["-i", str(input_file), "-o", str(options), "-c", str(config_file)],
    )

    assert result.exit_code == 0
    output = log_stream.getvalue()
    assert "#queries= 1" in output
    assert "Query No.0: profile_construct" not in output


def test_missing_config_file(tmp_path):
    input_file = tmp_path / "job1.in"
    input_file.write_text(">q\nMKV\n")
    result = CliRunner().invoke(
        comerws_cli.main, ["-i", str(input_file), "-c", str(tmp_path / "absent.yaml")]
    )
    assert result.exit_code == 1


def test_unknown_method_rejected(tmp_path):
    input_file = tmp_path / "job1.in"
    input_file.write_text(">q\nMKV\n")
    result = CliRunner().invoke(comerws_cli.main, ["-i", str(input_file), "-m", "blast"])
    assert result.exit_code == 2
