#!/usr/bin/env python3
"""
Find and merge duplicate client records.

Duplicates are clients sharing a normalized email or phone. Merging relinks
every invoice, message, gallery and file of the duplicate to the primary,
fills the primary's blank contact fields, and deletes the duplicate.

Nothing is written unless --execute is passed.

Usage:
    python scripts/merge_clients.py --list-duplicates [--mode email|phone|both]
    python scripts/merge_clients.py --suggest [--strategy keep-oldest|keep-newest]
    python scripts/merge_clients.py --primary <id> --duplicate <id> [--duplicate <id>] [--execute]
    python scripts/merge_clients.py --batch [--mode both] [--limit 20] [--execute]
"""
import sys
import logging
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.dedup_config import DedupConfig
from config.settings import settings
from api.services.batch_merge import BatchMergeOrchestrator
from api.services.client_store import get_client_store
from api.services.duplicate_grouper import DuplicateGrouper
from api.services.merge_executor import MergeExecutor
from api.services.merge_models import MergeInstruction, StoreUnavailable
from api.services.merge_planner import MergePlanner

logger = logging.getLogger(__name__)


def list_duplicates(store, mode: str, limit: int) -> list:
    """Print duplicate groups."""
    groups = DuplicateGrouper(store, settings.country_code).find_groups(mode=mode, limit=limit)
    print(f"\nFound {len(groups)} duplicate groups:\n")
    for i, group in enumerate(groups, 1):
        print(f"{i}. {group.key.kind}: {group.key.value} ({group.size} clients)")
        for client in store.get_many(group.member_ids):
            print(f"   - {client.display_name} (ID: {client.id}, created {client.created_at.date()})")
        print()
    return groups


def suggest(store, mode: str, strategy: str, limit: int) -> list:
    """Print which client each group would keep."""
    planner = MergePlanner(store, DuplicateGrouper(store, settings.country_code))
    suggestions = planner.suggest_all(mode=mode, strategy=strategy, limit=limit)
    print(f"\n{len(suggestions)} merge suggestions ({strategy}):\n")
    for s in suggestions:
        print(f"{s.key.kind}: {s.key.value}")
        print(f"   keep:   {s.primary.display_name} ({s.primary.id})")
        for d in s.duplicates:
            print(f"   remove: {d.display_name} ({d.id})")
        print()
    return suggestions


def merge(store, primary_id: str, duplicate_ids: list[str], dry_run: bool):
    """Merge explicit duplicates into primary."""
    result = MergeExecutor(store).execute(
        MergeInstruction(primary_id=primary_id, duplicate_ids=duplicate_ids),
        dry_run=dry_run,
    )
    if not result.ok:
        logger.error(f"{result.error.value}: {result.detail}")
        return result

    for outcome in result.outcomes:
        line = f"   {outcome.status.value}: {outcome.duplicate_id}"
        if outcome.relinked:
            line += " (" + ", ".join(f"{t}={n}" for t, n in outcome.relinked.items()) + ")"
        if outcome.error_kind:
            line += f" [{outcome.error_kind.value}: {outcome.detail}]"
        logger.info(line)
    logger.info(f"Merged: {result.merged_count}")
    return result


def batch(store, mode: str, strategy: str, limit: int, dry_run: bool):
    """Merge every discovered duplicate group."""
    planner = MergePlanner(store, DuplicateGrouper(store, settings.country_code))
    summary = BatchMergeOrchestrator(MergeExecutor(store), planner).execute_discovered(
        mode=mode, strategy=strategy, limit=limit, dry_run=dry_run,
    )
    for entry in summary.preview:
        logger.info(f"   keep {entry['keep']}, remove {', '.join(entry['remove'])}")
    logger.info(f"\n=== Batch Summary ===")
    logger.info(f"Groups: {summary.groups}")
    logger.info(f"Merged: {summary.total_merged}")
    return summary


def main():
    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    parser = argparse.ArgumentParser(description='Find and merge duplicate client records')
    parser.add_argument('--list-duplicates', action='store_true', help='List duplicate groups')
    parser.add_argument('--suggest', action='store_true', help='Show which client each group would keep')
    parser.add_argument('--batch', action='store_true', help='Merge every discovered group')
    parser.add_argument('--primary', help='ID of the client to keep')
    parser.add_argument('--duplicate', action='append', default=[], help='ID of a client to merge into primary (repeatable)')
    parser.add_argument('--mode', choices=DedupConfig.MODES, default='email')
    parser.add_argument('--strategy', choices=DedupConfig.STRATEGIES, default=settings.default_strategy)
    parser.add_argument('--limit', type=int, default=settings.default_limit)
    parser.add_argument('--db', help='Path to the clients database (default from settings)')
    parser.add_argument('--execute', action='store_true', help='Actually apply changes')
    args = parser.parse_args()

    try:
        store = get_client_store(args.db)

        if args.list_duplicates:
            list_duplicates(store, args.mode, args.limit)
            return 0

        if args.suggest:
            suggest(store, args.mode, args.strategy, args.limit)
            return 0

        if args.batch:
            batch(store, args.mode, args.strategy, args.limit, dry_run=not args.execute)
        elif args.primary and args.duplicate:
            result = merge(store, args.primary, args.duplicate, dry_run=not args.execute)
            if not result.ok:
                return 1
        else:
            parser.print_help()
            print("\nExamples:")
            print("  python scripts/merge_clients.py --list-duplicates --mode both")
            print("  python scripts/merge_clients.py --suggest --strategy keep-newest")
            print("  python scripts/merge_clients.py --primary abc123 --duplicate def456 --execute")
            print("  python scripts/merge_clients.py --batch --mode email --execute")
            return 0
    except StoreUnavailable as e:
        logger.error(f"Client store unavailable: {e}")
        return 2

    if not args.execute:
        logger.info("\nDRY RUN - no changes made. Use --execute to apply.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
