from __future__ import annotations

import asyncio
import signal
from pathlib import Path

import pytest

from immo_harvester import main as app_main
from immo_harvester.database.models import ProviderConfig
from immo_harvester.main import (
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    EXIT_UNKNOWN_JOB,
    HarvesterApp,
    parse_args,
)
from tests.conftest import open_db, seed_job


@pytest.fixture(autouse=True)
def keep_signal_handlers(monkeypatch):
    monkeypatch.setattr(signal, "signal", lambda *args: None)


def _write_settings(tmp_path: Path) -> Path:
    settings = tmp_path / "settings.yaml"
    settings.write_text(
        f"database:\n  path: {tmp_path / 'harvester.db'}\n"
        "logging:\n  level: INFO\n"
        "http:\n  max_retries: 1\n  rate_limit_calls: 0\n",
        encoding="utf-8",
    )
    return settings


def test_parse_args() -> None:
    args = parse_args(["--config", "custom.yaml", "run", "--job", "job-1"])
    assert args.command == "run"
    assert args.job_id == "job-1"
    assert args.config == Path("custom.yaml")

    args = parse_args(["reconcile"])
    assert args.command == "reconcile" and args.config is None
    assert parse_args(["jobs"]).command == "jobs"


def test_parse_args_requires_a_command() -> None:
    with pytest.raises(SystemExit):
        parse_args([])


def test_missing_config_exits_with_config_error(tmp_path) -> None:
    assert app_main.main(["--config", str(tmp_path / "nope.yaml"), "run"]) == EXIT_CONFIG_ERROR


def test_run_without_jobs_and_unknown_job(tmp_path) -> None:
    settings = str(_write_settings(tmp_path))
    assert app_main.main(["--config", settings, "run"]) == EXIT_OK
    assert app_main.main(["--config", settings, "run", "--job", "missing"]) == EXIT_UNKNOWN_JOB
    assert app_main.main(["--config", settings, "reconcile"]) == EXIT_OK


def test_jobs_command_lists_stored_jobs(tmp_path) -> None:
    settings = _write_settings(tmp_path)

    async def scenario():
        db = await open_db(str(tmp_path / "harvester.db"))
        try:
            await seed_job(db, "job-b", providers=[ProviderConfig(id="immoscout", url="https://a")])
            await seed_job(db, "job-a", providers=[ProviderConfig(id="immowelt", url="https://b")], enabled=False)
        finally:
            await db.close()

        app = HarvesterApp(settings_path=settings)
        try:
            await app.start()
            return await app.list_jobs()
        finally:
            await app.shutdown()

    jobs = asyncio.run(scenario())
    assert [job.id for job in jobs] == ["job-a", "job-b"]
    assert app_main.main(["--config", str(settings), "jobs"]) == EXIT_OK
