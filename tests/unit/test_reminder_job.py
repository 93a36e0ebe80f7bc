import pytest

from app.features.events.jobs import reminder_job


class ClosingSender:
    def __init__(self):
        self.closed = False

    async def close(self):
        self.closed = True


@pytest.fixture
def resource_calls(monkeypatch):
    calls = []

    async def initialize():
        calls.append("db.initialize")

    async def db_close():
        calls.append("db.close")

    async def redis_close():
        calls.append("redis.close")

    monkeypatch.setattr(reminder_job.db_pool, "initialize", initialize)
    monkeypatch.setattr(reminder_job.db_pool, "close", db_close)
    monkeypatch.setattr(reminder_job.fast_redis, "close", redis_close)
    return calls


@pytest.mark.asyncio
async def test_missing_notification_url_opens_nothing(monkeypatch, resource_calls):
    monkeypatch.setattr(
        "app.features.events.services.notification_client.settings.NOTIFICATION_SERVICE_URL", None
    )

    with pytest.raises(RuntimeError):
        await reminder_job.run_event_reminders()

    assert resource_calls == []


@pytest.mark.asyncio
async def test_database_failure_still_releases_everything(monkeypatch, resource_calls):
    sender = ClosingSender()
    monkeypatch.setattr(reminder_job, "build_notification_sender", lambda: sender)

    async def failing_initialize():
        raise RuntimeError("database unreachable")

    monkeypatch.setattr(reminder_job.db_pool, "initialize", failing_initialize)

    with pytest.raises(RuntimeError, match="database unreachable"):
        await reminder_job.run_event_reminders()

    assert sender.closed is True
    assert resource_calls == ["redis.close", "db.close"]
