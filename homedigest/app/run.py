"""
Background scheduler for Home Digest.

Four independent loops share one Home Assistant client: snapshot
collection every N minutes, the daily digest at DIGEST_TIME, the weekly
digest on WEEKLY_DIGEST_DAY, and snapshot retention cleanup at 03:00.
Each loop logs and survives its own failures so one bad tick never stops
the others.
"""

import asyncio
import logging

from homedigest.app.collector import SnapshotCollector, cleanup_old_data
from homedigest.app.config import load_config, openai_api_key
from homedigest.app.digest import generate_and_notify
from homedigest.app.errors import DigestError
from homedigest.app.ha import HAClient
from homedigest.app.openai_client import OpenAIClient
from homedigest.app.util import setup_logging, next_time_of_day, next_weekday_time

CLEANUP_TIME = "03:00"

_LOGGER = logging.getLogger("homedigest")


def make_gpt(cfg: dict) -> OpenAIClient:
    return OpenAIClient(model=cfg.get("model"), timeout=cfg.get("generation_timeout"), api_key=openai_api_key())


async def run_scheduled_digest(ha: HAClient, digest_type: str) -> None:
    cfg = load_config()
    gpt = make_gpt(cfg)
    try:
        digest = await generate_and_notify(digest_type, ha=ha, gpt=gpt, language=cfg.get("language"))
        _LOGGER.info("Scheduled %s digest #%s done (notified=%s)", digest_type, digest["id"],
                     digest["notification"].get("success"))
    except DigestError as exc:
        _LOGGER.error("Scheduled %s digest failed: %s", digest_type, exc)
    finally:
        await gpt.close()


async def collection_loop(collector: SnapshotCollector) -> None:
    """Fire a collection every interval; a tick that overlaps a slow run is skipped by the collector."""
    tasks: set[asyncio.Task] = set()
    while True:
        interval = int(load_config().get("snapshot_interval_minutes", 15))
        task = asyncio.create_task(_collect_once(collector))
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        await asyncio.sleep(max(1, interval) * 60)


async def _collect_once(collector: SnapshotCollector) -> None:
    try:
        await collector.collect()
    except Exception as exc:
        _LOGGER.exception("Snapshot collection failed: %s", exc)


async def daily_digest_loop(ha: HAClient) -> None:
    while True:
        try:
            wait_seconds = await next_time_of_day(load_config().get("digest_time", "07:00"))
            await asyncio.sleep(wait_seconds)
            await run_scheduled_digest(ha, "daily")
        except Exception as exc:
            _LOGGER.exception("Error in daily_digest_loop: %s", exc)
            # keep the next wake-up from firing immediately
            await asyncio.sleep(60)


async def weekly_digest_loop(ha: HAClient) -> None:
    while True:
        try:
            cfg = load_config()
            wait_seconds = await next_weekday_time(cfg.get("weekly_digest_day", "sunday"),
                                                   cfg.get("digest_time", "07:00"))
            await asyncio.sleep(wait_seconds)
            await run_scheduled_digest(ha, "weekly")
        except Exception as exc:
            _LOGGER.exception("Error in weekly_digest_loop: %s", exc)
            await asyncio.sleep(60)


async def cleanup_loop() -> None:
    while True:
        try:
            await asyncio.sleep(await next_time_of_day(CLEANUP_TIME))
            cleanup_old_data(int(load_config().get("history_days", 7)))
        except Exception as exc:
            _LOGGER.exception("Error in cleanup_loop: %s", exc)
            await asyncio.sleep(60)


def start_background_tasks(ha: HAClient, collector: SnapshotCollector) -> list[asyncio.Task]:
    cfg = load_config()
    _LOGGER.info(
        "Scheduler: snapshots every %s min, daily digest at %s, weekly on %s, cleanup at %s",
        cfg.get("snapshot_interval_minutes"), cfg.get("digest_time"),
        cfg.get("weekly_digest_day"), CLEANUP_TIME,
    )
    return [
        asyncio.create_task(collection_loop(collector)),
        asyncio.create_task(daily_digest_loop(ha)),
        asyncio.create_task(weekly_digest_loop(ha)),
        asyncio.create_task(cleanup_loop()),
    ]


async def main() -> None:
    """
    Headless entry point: run the scheduler without the HTTP API.
    Runs until interrupted; the Home Assistant client is closed on exit.
    """
    setup_logging(load_config().get("log_level", "INFO"))
    ha = HAClient()
    collector = SnapshotCollector(ha)
    try:
        await asyncio.gather(*start_background_tasks(ha, collector))
    finally:
        await ha.close()


if __name__ == "__main__":
    asyncio.run(main())
