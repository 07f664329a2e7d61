import pytest

from queue_sentinel.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_job_name_defaults_to_single_cycle(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["queue-sentinel"])
    monkeypatch.delenv("WORKER_JOB", raising=False)

    assert worker._resolve_job_name() == "queue_monitor_once"


def test_job_name_from_cli_argument(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["queue-sentinel", " Queue_Monitor "])

    assert worker._resolve_job_name() == "queue_monitor"
