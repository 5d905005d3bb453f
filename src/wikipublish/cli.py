import argparse
import dataclasses
import json
import logging
import os
import sys

import mwclient
from tqdm import tqdm

from . import config
from .actions import WikidataAction, load_plan, write_plan
from .cache_sqlite import SQLiteKeyValueStore
from .caching import LookupCache
from .commons import CommonsClient
from .errors import ActionStateError, PlanValidationError, PublishError
from .executor import ActionExecutor, ExecutorContext
from .planning import PublishPlanBuilder
from .resolver import CategoryResolver, UnlinkedCategoryPolicy
from .scheduler import PublishScheduler
from .utils import is_qid, wiki_errors
from .wikidata import WikidataClient

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def open_cache(path):
    return LookupCache(store=SQLiteKeyValueStore(path))


def connect_site(host, login=True):
    site = mwclient.Site(host, clients_useragent=config.HEADERS["User-Agent"])
    if not login:
        return site
    username = os.environ.get(config.USERNAME_ENV)
    password = os.environ.get(config.PASSWORD_ENV)
    if not username or not password:
        raise PublishError(f"Set {config.USERNAME_ENV} and {config.PASSWORD_ENV} to publish")
    with wiki_errors(f"Logging in to {host}"):
        site.login(username, password)
    logger.info("Logged in to %s as %s", host, username)
    return site


def prompt_confirm(category, qid):
    """Ask on the terminal whether an unlinked existing category belongs to ``qid``."""
    if not sys.stdin.isatty():
        return False
    answer = input(f"Category:{category} exists without a Wikidata link. Use it for {qid}? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def build_services(cache, policy, login=False):
    commons_site = connect_site(config.COMMONS_HOST) if login else None
    wikidata_site = connect_site(config.WIKIDATA_HOST) if login else None
    commons = CommonsClient(cache, site=commons_site)
    wikidata = WikidataClient(cache, site=wikidata_site)
    resolver = CategoryResolver(commons, wikidata, cache, policy=policy, confirm=prompt_confirm)
    return commons, wikidata, resolver


def build_context(actions, wikidata):
    """Fetch the people and organisations referenced by Wikidata actions in the plan."""
    context = ExecutorContext()
    for action in actions:
        if not isinstance(action, WikidataAction) or not is_qid(action.entity_id):
            continue
        if action.entity_type not in ("person", "organization"):
            continue
        entity = wikidata.get_entity(action.entity_id)
        if entity is None:
            continue
        if action.entity_type == "person":
            context.people.append(entity)
        else:
            context.organizations.append(entity)
    return context


def cmd_publish(args, cache):
    actions = load_plan(args.plan)
    commons, wikidata, resolver = build_services(cache, args.policy, login=True)
    executor = ActionExecutor(commons, wikidata, resolver, cache)
    scheduler = PublishScheduler(actions, executor, build_context(actions, wikidata))
    if args.retry_failed:
        for action in scheduler.failed_actions():
            scheduler.requeue(action.id)
            logger.info("Re-queued %s", action.id)

    if args.only:
        try:
            action = scheduler.publish_one(args.only)
        except KeyError as exc:
            logger.error("%s", exc.args[0])
            return 1
        failed = {action.id: action.error} if action.error else {}
    else:
        progress = tqdm(total=len(scheduler.queue()), desc="Publishing", unit="action")
        try:
            summary = scheduler.publish_all(progress=lambda action: progress.update(1))
        except KeyboardInterrupt:
            scheduler.stop()
            raise
        finally:
            progress.close()
        failed = summary.failed
        logger.info(
            "Completed %d, failed %d, blocked %d, skipped %d",
            len(summary.completed),
            len(summary.failed),
            len(summary.blocked),
            len(summary.skipped),
        )
    for action_id, message in failed.items():
        logger.error("%s: %s", action_id, message)
    if args.report:
        write_plan(scheduler.actions, args.report)
        logger.info("Wrote status report to %s", args.report)
    return 1 if failed else 0


def cmd_show(args, cache):
    scheduler = PublishScheduler(load_plan(args.plan), executor=None)
    blocked = {action.id for action in scheduler.blocked_actions()}
    for action in scheduler.queue():
        state = "blocked" if action.id in blocked else action.status.value
        dependency = f" (after {action.depends_on})" if action.depends_on else ""
        print(f"{state:<12} {action.kind:<16} {action.id}{dependency}")
        if action.error:
            print(f"{'':<12} {action.error}")
    return 0


def cmd_resolve_category(args, cache):
    _, wikidata, resolver = build_services(cache, args.policy)
    entity = wikidata.get_entity(args.qid)
    if entity is None:
        logger.error("Wikidata item %s does not exist", args.qid)
        return 1
    info = resolver.resolve_performer(entity)
    payload = dataclasses.asdict(info)
    payload["source"] = info.source.value
    print(json.dumps(payload, ensure_ascii=False, indent=2))
    return 0


def cmd_plan_performers(args, cache):
    _, wikidata, resolver = build_services(cache, args.policy)
    builder = PublishPlanBuilder(resolver, wikidata)
    for qid in args.qids:
        info = builder.add_performer_by_qid(qid.strip().upper(), parent_category=args.parent)
        logger.info("%s -> Category:%s (%s)", qid, info.commons_category, info.source.value)
    actions = builder.build()
    write_plan(actions, args.out)
    logger.info("Wrote %d action(s) to %s", len(actions), args.out)
    return 0


def cmd_cache(args, cache):
    if args.cache_command == "clear":
        cache.clear()
        logger.info("Lookup cache cleared")
        return 0
    stats = cache.get_stats()
    print(f"Total entries: {stats.total_entries}")
    for cache_type, count in sorted(stats.type_breakdown.items()):
        print(f"  {cache_type}: {count}")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Publish categories, claims and images to Commons and Wikidata.")
    parser.add_argument(
        "--cache",
        type=str,
        default=str(config.LOOKUP_CACHE_DB),
        help="SQLite file backing the lookup cache.",
    )
    policies = [policy.value for policy in UnlinkedCategoryPolicy]
    subparsers = parser.add_subparsers(dest="command", required=True)

    publish = subparsers.add_parser("publish", help="Publish the actions of a plan file.")
    publish.add_argument("plan", help="Plan JSON file.")
    publish.add_argument("--report", default=None, help="Write the resulting action statuses to this file.")
    publish.add_argument("--only", default=None, help="Publish a single ready action by id.")
    publish.add_argument(
        "--retry-failed",
        action="store_true",
        help="Re-queue actions a previous report marked as error; otherwise they are left as failed.",
    )
    publish.add_argument("--policy", choices=policies, default=config.UNLINKED_CATEGORY_POLICY)
    publish.set_defaults(handler=cmd_publish)

    show = subparsers.add_parser("show", help="List the queue of a plan file.")
    show.add_argument("plan", help="Plan JSON file.")
    show.set_defaults(handler=cmd_show)

    resolve = subparsers.add_parser("resolve-category", help="Resolve the Commons category for a performer.")
    resolve.add_argument("qid", help="Wikidata item id of the performer.")
    resolve.add_argument("--policy", choices=policies, default=config.UNLINKED_CATEGORY_POLICY)
    resolve.set_defaults(handler=cmd_resolve_category)

    plan = subparsers.add_parser("plan-performers", help="Build category and P373 actions for performers.")
    plan.add_argument("qids", nargs="+", help="Wikidata item ids of the performers.")
    plan.add_argument("--out", required=True, help="Plan file to write.")
    plan.add_argument("--parent", default=None, help="Parent category for new performer categories.")
    plan.add_argument("--policy", choices=policies, default=config.UNLINKED_CATEGORY_POLICY)
    plan.set_defaults(handler=cmd_plan_performers)

    cache = subparsers.add_parser("cache", help="Inspect or clear the lookup cache.")
    cache.add_argument("cache_command", choices=["stats", "clear"])
    cache.set_defaults(handler=cmd_cache)
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    store_cache = open_cache(args.cache)
    try:
        return args.handler(args, store_cache)
    except PlanValidationError as exc:
        logger.error("Invalid plan: %s %s", exc, exc.details or "")
        return 2
    except (PublishError, ActionStateError) as exc:
        logger.error("%s", exc)
        return 1
    finally:
        store_cache.store.close()


if __name__ == "__main__":
    raise SystemExit(main())
