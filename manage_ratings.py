#!/usr/bin/env python3
"""
Aggregate Management Utility

This script provides utilities to maintain the denormalized aggregates:
- Recompute the rating summary of one book or author
- Reconcile every rating summary and book count
- Show aggregate statistics
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from pymongo.errors import PyMongoError

from catalog.database import MongoDBManager
from catalog.exceptions import LibraryError
from catalog.models import ReviewTarget, TargetKind
from catalog.ratings import AggregateMaintainer
from scheduler.models import SchedulerConfig
from scheduler.reconciler import AggregateReconciler
from utilities.config import config
from utilities.logger import setup_logging


def create_db_manager() -> MongoDBManager:
    return MongoDBManager(
        connection_url=config.mongodb_url,
        database_name=config.mongodb_database,
        server_selection_timeout_ms=config.server_selection_timeout_ms
    )


async def recompute_target(kind: str, target_id: str):
    """Recompute the rating summary of one book or author."""
    print(f"\n🔄 RECOMPUTING {kind.upper()} RATING")
    print(f"ID: {target_id}")
    print("=" * 80)

    db_manager = create_db_manager()
    try:
        await db_manager.connect()
        maintainer = AggregateMaintainer(db_manager)

        summary = await maintainer.recompute_rating(ReviewTarget(kind=TargetKind(kind), id=target_id))

        print(f"✅ Average rating: {summary.average_rating:.2f}")
        print(f"✅ Rating count:   {summary.rating_count}")

    except (LibraryError, PyMongoError) as e:
        print(f"❌ Error recomputing rating: {e}")
    finally:
        await db_manager.disconnect()


async def reconcile_all():
    """Recompute every rating summary and book count."""
    print("\n" + "=" * 80)
    print("🧮 RECONCILING ALL AGGREGATES")
    print("=" * 80)

    db_manager = create_db_manager()
    try:
        await db_manager.connect()
        reconciler = AggregateReconciler(AggregateMaintainer(db_manager), SchedulerConfig.from_settings(config))

        result = await reconciler.run()

        for step, corrected in result.corrected.items():
            print(f"   {step:<25} {corrected} corrected")
        print(f"\n⏱️  Duration: {result.duration_seconds:.2f}s")

        if result.success:
            print(f"✅ Reconciliation finished, {result.total_corrected} aggregates corrected")
        else:
            print("⚠️  Reconciliation finished with errors:")
            for error in result.errors:
                print(f"   - {error}")

    except (LibraryError, PyMongoError) as e:
        print(f"❌ Error reconciling aggregates: {e}")
    finally:
        await db_manager.disconnect()


async def show_statistics():
    """Show document counts and rating coverage."""
    print("\n" + "=" * 80)
    print("📊 AGGREGATE STATISTICS")
    print("=" * 80)

    db_manager = create_db_manager()
    try:
        await db_manager.connect()

        stats = await db_manager.get_database_stats()
        for name, count in stats.items():
            print(f"📁 {name.capitalize():<12} {count}")

        rated_books = await db_manager.books.count_documents({"rating_count": {"$gt": 0}})
        rated_authors = await db_manager.authors.count_documents({"rating_count": {"$gt": 0}})
        print()
        print(f"⭐ Rated books:   {rated_books}")
        print(f"⭐ Rated authors: {rated_authors}")

    except (LibraryError, PyMongoError) as e:
        print(f"❌ Error getting statistics: {e}")
    finally:
        await db_manager.disconnect()


async def main():
    """Main function."""
    if len(sys.argv) < 2:
        print("Usage: python manage_ratings.py [recompute|reconcile|stats] [book|author] [id]")
        print()
        print("Commands:")
        print("  recompute  - Recompute the rating of one book or author")
        print("  reconcile  - Recompute every rating and book count")
        print("  stats      - Show aggregate statistics")
        print()
        print("Examples:")
        print("  python manage_ratings.py recompute book 64b7f0c2a1e4d3b2c1a09f87")
        print("  python manage_ratings.py reconcile")
        print("  python manage_ratings.py stats")
        sys.exit(1)

    command = sys.argv[1].lower()

    # Setup logging
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.log_file,
        debug=config.debug
    )

    if command == "recompute":
        if len(sys.argv) < 4 or sys.argv[2] not in ("book", "author"):
            print("❌ Error: target kind and id required for recompute command")
            print("Usage: python manage_ratings.py recompute <book|author> <id>")
            sys.exit(1)
        await recompute_target(sys.argv[2], sys.argv[3])
    elif command == "reconcile":
        await reconcile_all()
    elif command == "stats":
        await show_statistics()
    else:
        print(f"❌ Unknown command: {command}")
        print("Available commands: recompute, reconcile, stats")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
