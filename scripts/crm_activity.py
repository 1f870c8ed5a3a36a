#!/usr/bin/env python3
"""CLI to inspect the CRM activity log, local fallback collections and pipeline summary.

Usage:
    python scripts/crm_activity.py recent --limit 20
    python scripts/crm_activity.py entity lead lead_1717000000000_abc123xyz
    python scripts/crm_activity.py user user-42
    python scripts/crm_activity.py action converted
    python scripts/crm_activity.py local leads
    python scripts/crm_activity.py summary --days 7
    python scripts/crm_activity.py clear --yes

Reads LOCAL_STORE_BACKEND / LOCAL_STORE_PATH / REDIS_URL from environment or .env file.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path so we can import src.crm_client
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def _print_activities(activities) -> None:
    if not activities:
        print("No activities.")
        return
    for activity in activities:
        print(
            f"{activity.timestamp.isoformat()}  {activity.type.value:<11} "
            f"{activity.action.value:<14} {activity.user_name}: {activity.description}"
        )


async def run(args: argparse.Namespace) -> int:
    from src.crm_client.core.logging import configure_structlog
    from src.crm_client.crm.analytics import build_summary
    from src.crm_client.crm.client import build_crm_client
    from src.crm_client.crm.schemas import ActivityAction, EntityType

    configure_structlog()
    client = build_crm_client()
    try:
        if args.command == "recent":
            _print_activities(await client.activities.get_recent(args.limit))
        elif args.command == "entity":
            _print_activities(
                await client.activities.get_by_entity(EntityType(args.type), args.entity_id)
            )
        elif args.command == "user":
            _print_activities(await client.activities.get_by_user(args.user_id))
        elif args.command == "action":
            _print_activities(await client.activities.get_by_action(ActivityAction(args.action)))
        elif args.command == "local":
            records = await client.local_snapshot(args.collection)
            print(json.dumps(records, indent=2))
        elif args.command == "summary":
            summary = await build_summary(client, days=args.days)
            print(summary.model_dump_json(indent=2))
        elif args.command == "clear":
            if not args.yes:
                print("Refusing to clear the activity log without --yes")
                return 1
            await client.activities.clear()
            print("Activity log cleared.")
    finally:
        await client.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect the CRM activity log")
    sub = parser.add_subparsers(dest="command", required=True)

    recent = sub.add_parser("recent", help="Most recent activities, newest first")
    recent.add_argument("--limit", type=int, default=None, help="Number of activities")

    entity = sub.add_parser("entity", help="Activities for one entity")
    entity.add_argument("type", choices=[t.value for t in _entity_types()])
    entity.add_argument("entity_id")

    user = sub.add_parser("user", help="Activities performed by a user")
    user.add_argument("user_id")

    action = sub.add_parser("action", help="Activities with a given action")
    action.add_argument("action", choices=[a.value for a in _actions()])

    local = sub.add_parser("local", help="Dump a local fallback collection")
    local.add_argument("collection", choices=["leads", "opportunities", "accounts"])

    summary = sub.add_parser("summary", help="Pipeline value, won value and conversion rate")
    summary.add_argument("--days", type=int, default=30, help="Days in the daily series")

    clear = sub.add_parser("clear", help="Delete the entire activity log")
    clear.add_argument("--yes", action="store_true", help="Confirm deletion")

    args = parser.parse_args()
    sys.exit(asyncio.run(run(args)))


def _entity_types():
    from src.crm_client.crm.schemas import EntityType

    return list(EntityType)


def _actions():
    from src.crm_client.crm.schemas import ActivityAction

    return list(ActivityAction)


if __name__ == "__main__":
    main()
