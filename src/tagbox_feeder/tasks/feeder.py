from __future__ import annotations
import logging
from functools import lru_cache
import redis
from celery import shared_task
from tagbox_feeder.context import SiteContext
from tagbox_feeder.dispatch import FeedDispatcher
from tagbox_feeder.infrastructure.db import healthcheck
from tagbox_feeder.validation.events import parse_tag_events, parse_user_changes

logger = logging.getLogger(__name__)


@lru_cache
def worker_context() -> SiteContext:
    """The site context a worker process serves; built on first task."""
    return SiteContext()


@shared_task
def feed_pending_tags(batch_size: int | None = None):
    """Producer: feed every tagbox the activity past its watermarks."""
    logged = FeedDispatcher(worker_context()).feed_pending(batch_size)
    return {"status": "ok", "logged": logged}


@shared_task
def feed_tag_payloads(payloads: list[dict], kind: str = "new"):
    """Push-mode ingestion of already-committed tag rows (kind: new|deactivated)."""
    events, errors = parse_tag_events(payloads)
    if errors:
        logger.warning("rejected %d tag payloads: %s", len(errors), errors[:5])
    dispatcher = FeedDispatcher(worker_context())
    if kind == "deactivated":
        logged = dispatcher.feed_deactivated_tags(events)
    else:
        logged = dispatcher.feed_new_tags(events)
    return {"status": "ok", "logged": logged, "rejected": len(errors)}


@shared_task
def feed_userchange_payloads(payloads: list[dict]):
    changes, errors = parse_user_changes(payloads)
    if errors:
        logger.warning("rejected %d user change payloads: %s", len(errors), errors[:5])
    logged = FeedDispatcher(worker_context()).feed_user_changes(changes)
    return {"status": "ok", "logged": logged, "rejected": len(errors)}


@shared_task
def run_important_tagboxes(limit: int | None = None, min_weightsum: float | None = None):
    """Consumer: recompute the most important affected ids and compact the feeder log."""
    summary = FeedDispatcher(worker_context()).run_most_important(limit, min_weightsum)
    return {"status": "ok", **summary}


@shared_task
def force_tagbox_recalc(tagbox: int | str, affected_id: int):
    ctx = worker_context()
    rec = ctx.registry.load(tagbox, fields=["tbid"]) if tagbox else None
    if rec is None:
        return {"status": "error", "error": "tagbox_not_found"}
    tfid = ctx.feeder.force_recalc(rec["tbid"], affected_id)
    return {"status": "ok", "tfid": tfid}


@shared_task
def feeder_readiness():
    """Readiness check: the store and the broker are both reachable."""
    settings = worker_context().settings
    db_ok = healthcheck()
    redis_ok = True
    try:
        redis.Redis.from_url(settings.redis_url).ping()
    except redis.exceptions.RedisError as exc:
        logger.warning("redis not reachable at readiness check: %s", exc)
        redis_ok = False
    return {"db": db_ok, "redis": redis_ok, "status": "ok" if db_ok and redis_ok else "degraded"}
