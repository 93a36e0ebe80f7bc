import pytest

from app.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_accepts_summary_result(monkeypatch):
    async def reminder_job():
        return {"job_run": "event_reminders", "results": {}, "totals": {"sent": 1}}

    monkeypatch.setitem(worker.JOB_REGISTRY, "event_reminders", reminder_job)

    await worker.run_worker(" Event_Reminders ")


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_event_reminders_is_registered():
    assert "event_reminders" in worker.JOB_REGISTRY


def test_job_name_from_environment(monkeypatch):
    monkeypatch.setattr(worker.sys, "argv", ["worker"])
    monkeypatch.setenv("WORKER_JOB", "Event_Reminders")

    assert worker._resolve_job_name() == "event_reminders"


@pytest.mark.asyncio
async def test_run_worker_returns_job_summary(monkeypatch):
    summary = {"job_run": "event_reminders", "totals": {"sent": 2, "failed": 0}}

    async def reminder_job():
        return summary

    monkeypatch.setitem(worker.JOB_REGISTRY, "event_reminders", reminder_job)

    assert await worker.run_worker("event_reminders") is summary


@pytest.mark.parametrize(
    ("result", "expected"),
    [
        (None, False),
        ({"totals": {"sent": 3, "failed": 0}, "expansion_failures": 0}, False),
        ({"totals": {"sent": 3, "failed": 1}, "expansion_failures": 0}, True),
        ({"totals": {"sent": 0, "failed": 0}, "expansion_failures": 2}, True),
    ],
)
def test_failures_are_reported_through_exit_status(result, expected):
    assert worker._has_failures(result) is expected


def test_main_exits_non_zero_on_failed_deliveries(monkeypatch):
    async def reminder_job():
        return {"totals": {"sent": 1, "failed": 1}, "expansion_failures": 0}

    monkeypatch.setitem(worker.JOB_REGISTRY, "event_reminders", reminder_job)
    monkeypatch.setattr(worker.sys, "argv", ["worker", "event_reminders"])
    monkeypatch.setattr(worker, "setup_logging", lambda **kwargs: None)

    with pytest.raises(SystemExit) as exc:
        worker.main()

    assert exc.value.code == 1
