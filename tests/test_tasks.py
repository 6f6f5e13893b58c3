import pytest
import redis

from conftest import RecordingScorer, STORY
from tagbox_feeder.tasks import feeder as tasks


@pytest.fixture
def ctx(seed, make_context, monkeypatch):
    seed.globj(1, STORY)
    seed.tagbox("Despam")
    context = make_context({"Despam": RecordingScorer})
    monkeypatch.setattr(tasks, "worker_context", lambda: context)
    return context


def test_feed_tag_payloads_reports_rejects(ctx):
    result = tasks.feed_tag_payloads([
        {"tagid": 1, "globjid": 1, "uid": 100, "tagnameid": 1, "created_at": "2024-01-01T12:00:00"},
        {"tagid": -1, "globjid": 1, "uid": 100, "tagnameid": 1, "created_at": "2024-01-01T12:00:00"},
    ])
    assert result == {"status": "ok", "logged": {"Despam": 1}, "rejected": 1}


def test_pending_then_run_cycle(ctx, seed):
    seed.tag(1, 100)
    seed.tag(1, 200)
    assert tasks.feed_pending_tags() == {"status": "ok", "logged": {"Despam": 2}}
    result = tasks.run_important_tagboxes(10, 1)
    assert result == {"status": "ok", "completed": 1, "failed": 0, "skipped": 0, "compacted": 2}


def test_force_recalc_task(ctx):
    assert tasks.force_tagbox_recalc("Nope", 1) == {"status": "error", "error": "tagbox_not_found"}
    result = tasks.force_tagbox_recalc("Despam", 1)
    assert result["status"] == "ok"
    [agg] = ctx.feeder.top_affected(10, 1)
    assert agg.max_entry_id == result["tfid"]


def test_readiness_reports_unreachable_broker(ctx, monkeypatch):
    class DownRedis:
        def ping(self):
            raise redis.exceptions.ConnectionError("refused")

    monkeypatch.setattr(redis.Redis, "from_url", classmethod(lambda cls, url: DownRedis()))
    assert tasks.feeder_readiness() == {"db": True, "redis": False, "status": "degraded"}


def test_beat_schedule_points_at_real_tasks():
    from tagbox_feeder.infrastructure.celery_app import celery_app

    for entry in celery_app.conf.beat_schedule.values():
        module, _, name = entry["task"].rpartition(".")
        assert module == tasks.__name__
        assert hasattr(tasks, name)
