#!/usr/bin/env python3
"""
Run the profile sync once from the command line.

Usage:
    python scripts/run_sync.py                  # sync every stale handle now
    python scripts/run_sync.py --estimate-only  # count stale handles and price a paid run
    python scripts/run_sync.py --stats          # cached profile counts by source
    python scripts/run_sync.py --batch-size 25

Requires: DATABASE_URL set (or defaults to sqlite:///local.db). Redis is used
for circuit breaker state; if it is down the breakers fail open.
"""
import sys
import os
import json
import asyncio
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.database import load_models
from app.extensions import redis_client
from app.logging_config import configure_logging
from app.pipeline.base import EXTERNAL
from app.pipeline.cost_config import estimate
from app.pipeline.manager import build_pipeline
from app.services.apify import COST_KEYS, INSTAGRAM
from app.services.circuit_breaker import init_breakers


def estimate_only(pipeline):
    """Worst case: every stale handle falls through to the paid scraper."""
    candidates = pipeline.sync_job.collect_candidates()
    max_age = pipeline.sync_job.policy.max_age_days(EXTERNAL)
    stale = pipeline.cache.list_stale_subset(list(candidates), max_age, owner_type=EXTERNAL)
    cost = estimate([(COST_KEYS[INSTAGRAM], len(stale))])
    return {
        'total_profiles': len(candidates),
        'stale_profiles': len(stale),
        'max_cost': cost.to_dict(),
    }


def main():
    parser = argparse.ArgumentParser(description='Run the profile sync once')
    parser.add_argument('--estimate-only', action='store_true', help='Only report how much a sync would cost')
    parser.add_argument('--stats', action='store_true', help='Print cached profile counts by source and exit')
    parser.add_argument('--batch-size', type=int, default=None, help='Override SYNC_BATCH_SIZE')
    args = parser.parse_args()

    configure_logging()
    load_models()
    init_breakers(redis_client)
    pipeline = build_pipeline()

    if args.stats:
        print(json.dumps(pipeline.cache.stats(), indent=2))
        return 0

    if args.estimate_only:
        print(json.dumps(estimate_only(pipeline), indent=2))
        return 0

    if args.batch_size:
        pipeline.sync_job.batch_size = max(1, args.batch_size)

    stats = asyncio.run(pipeline.sync_job.run_manual())
    print(json.dumps(stats.to_dict(), indent=2))
    return 1 if stats.errors else 0


if __name__ == '__main__':
    sys.exit(main())
