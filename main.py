import argparse
import asyncio
import json
import logging
import signal
import sys
from dataclasses import dataclass

from ingest import config
from ingest.dedupe import DuplicateDetector
from ingest.errors import FeedNotFoundError, FeedValidationError
from ingest.monitoring import RunMonitor
from ingest.orchestrator import FeedFetchOrchestrator
from ingest.retention import RetentionCleaner
from ingest.rss import FeedParser
from ingest.scheduler import Scheduler
from ingest.store import ArticleStore
from ingest.utils import content_preview


log = logging.getLogger("feedkeeper")


# =========================
# WIRING
# =========================

@dataclass
class App:
    store: ArticleStore
    parser: FeedParser
    orchestrator: FeedFetchOrchestrator
    cleaner: RetentionCleaner
    scheduler: Scheduler

    async def close(self) -> None:
        if self.scheduler.running:
            self.scheduler.stop()
        await self.parser.close()
        self.store.close()


def build_app(database_url: str = config.DATABASE_URL) -> App:
    store = ArticleStore(database_url)
    store.init_schema()
    monitor = RunMonitor(alert_threshold=config.FAILURE_ALERT_THRESHOLD)
    parser = FeedParser()
    orchestrator = FeedFetchOrchestrator(parser, DuplicateDetector(), store, monitor=monitor)
    cleaner = RetentionCleaner(store)
    scheduler = Scheduler(orchestrator, cleaner, monitor=monitor)
    return App(store, parser, orchestrator, cleaner, scheduler)


def _print(data) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2, default=str))


# =========================
# COMMANDS
# =========================

async def cmd_serve(app: App, args) -> int:
    if not app.scheduler.start():
        log.error("Rien a executer: le scheduler est desactive.")
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    await stop.wait()
    log.info("Arret demande.")
    return 0


async def cmd_fetch_all(app: App, args) -> int:
    summary = await app.scheduler.trigger_fetch()
    _print({"success": True, **summary.as_dict()})
    return 0


async def cmd_fetch_feed(app: App, args) -> int:
    try:
        count = await app.orchestrator.fetch_feed_by_id(args.feed_id)
    except FeedNotFoundError as e:
        log.error("%s", e)
        return 1
    _print({"success": True, "feedId": args.feed_id, "articlesFetched": count})
    return 0


async def cmd_cleanup(app: App, args) -> int:
    result = await app.scheduler.trigger_cleanup(args.days)
    _print({"success": True, **result})
    return 0


async def cmd_add_feed(app: App, args) -> int:
    try:
        feed, validation, created, fetched = await app.orchestrator.register_feed(
            args.url, title=args.title, fetch_interval=args.interval
        )
    except FeedValidationError as e:
        log.error("%s", e)
        return 1
    _print({
        "created": created,
        "feed": {"id": feed.id, "url": feed.url, "title": feed.title},
        "warning": validation.warning,
        "articlesFetched": fetched,
    })
    return 0


async def cmd_set_active(app: App, args) -> int:
    try:
        feed = app.store.set_feed_active(args.feed_id, args.active)
    except FeedNotFoundError as e:
        log.error("%s", e)
        return 1
    _print({"id": feed.id, "isActive": feed.is_active})
    return 0


async def cmd_list_feeds(app: App, args) -> int:
    _print([
        {
            "id": f.id,
            "title": f.title,
            "url": f.url,
            "isActive": f.is_active,
            "lastFetched": f.last_fetched,
            "errorCount": f.error_count,
            "fetchError": f.fetch_error,
        }
        for f in app.store.list_feeds()
    ])
    return 0


async def cmd_count_articles(app: App, args) -> int:
    _print({"total": app.store.count_articles(args.feed_id)})
    return 0


async def cmd_recent_articles(app: App, args) -> int:
    for i, a in enumerate(app.store.recent_articles(args.limit), start=1):
        print(f"{i}. {a.title}")
        print(f"   Feed {a.feed_id} | {a.pub_date:%Y-%m-%d} | {a.author or 'Unknown author'}")
        print(f"   {content_preview(a.raw_content)}")
        print("")
    return 0


async def cmd_status(app: App, args) -> int:
    _print(app.scheduler.get_status())
    return 0


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="feedkeeper", description="RSS/Atom ingestion service")
    parser.add_argument("--database-url", default=config.DATABASE_URL)
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("serve", help="Run the fetch/cleanup scheduler").set_defaults(func=cmd_serve)
    sub.add_parser("fetch-all", help="Fetch all active feeds now").set_defaults(func=cmd_fetch_all)

    p = sub.add_parser("fetch-feed", help="Fetch one feed now")
    p.add_argument("feed_id", type=int)
    p.set_defaults(func=cmd_fetch_feed)

    p = sub.add_parser("cleanup", help="Delete old articles now")
    p.add_argument("--days", type=int, default=None)
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("add-feed", help="Validate and register a feed")
    p.add_argument("url")
    p.add_argument("--title", default=None)
    p.add_argument("--interval", type=int, default=60, help="fetch interval (minutes)")
    p.set_defaults(func=cmd_add_feed)

    p = sub.add_parser("disable-feed", help="Stop fetching a feed")
    p.add_argument("feed_id", type=int)
    p.set_defaults(func=cmd_set_active, active=False)

    p = sub.add_parser("enable-feed", help="Resume fetching a feed")
    p.add_argument("feed_id", type=int)
    p.set_defaults(func=cmd_set_active, active=True)

    sub.add_parser("list-feeds", help="List registered feeds").set_defaults(func=cmd_list_feeds)

    p = sub.add_parser("count-articles", help="Show article count")
    p.add_argument("--feed-id", type=int, default=None)
    p.set_defaults(func=cmd_count_articles)

    p = sub.add_parser("recent-articles", help="Show the most recent articles")
    p.add_argument("--limit", type=int, default=10)
    p.set_defaults(func=cmd_recent_articles)

    sub.add_parser("status", help="Show scheduler status").set_defaults(func=cmd_status)
    return parser


async def run(args) -> int:
    app = build_app(args.database_url)
    try:
        return await args.func(app, args)
    finally:
        await app.close()


def main(argv=None) -> int:
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
    config.validate_config()
    args = build_arg_parser().parse_args(argv)
    try:
        return asyncio.run(run(args))
    except Exception:
        # Echec d'infrastructure (base inaccessible...): seul cas non "success"
        log.exception("Commande %s en echec.", args.command)
        if args.command in ("fetch-all", "cleanup"):
            _print({"success": False})
        return 1


if __name__ == "__main__":
    sys.exit(main())
