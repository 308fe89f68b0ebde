#!/usr/bin/env python3
"""
Run AI categorization for one user in the foreground.

Uses an in-memory job store and waits for the job instead of returning
immediately, printing progress as batches complete.

Usage:
    python scripts/run_categorization.py <user_id> [--poll SECONDS]

Example:
    python scripts/run_categorization.py 6f1c2f5e-3f4b-4b8e-9a57-2a8c3e9f0d11
"""
import argparse
import asyncio
import sys
from uuid import UUID

from packages.common.config import get_settings
from packages.common.database import sessionmanager
from packages.domain.ai_categorization.exceptions import CategorizationError
from packages.domain.ai_categorization.job_store import InMemoryJobStateStore
from packages.domain.ai_categorization.launcher import AsyncioJobLauncher
from packages.domain.ai_categorization.service import build_orchestrator


async def main(user_id: UUID, poll: float) -> int:
    settings = get_settings()
    sessionmanager.init(settings.database_url)

    launcher = AsyncioJobLauncher()
    orchestrator = build_orchestrator(settings, store=InMemoryJobStateStore(), launcher=launcher)

    try:
        try:
            started = await orchestrator.start(user_id)
        except CategorizationError as e:
            print(f"Not started: [{e.code}] {e.message}")
            return 1

        print(f"Job {started.job_id}: {started.uncategorized_count} uncategorized transactions")

        while launcher.active_count:
            status = await orchestrator.get_status(user_id)
            if status.progress:
                p = status.progress
                print(f"  batch {p.current_batch}/{p.total_batches} - "
                      f"{p.processed_count}/{p.total_count} transactions")
            await asyncio.sleep(poll)

        await launcher.wait_all()
        status = await orchestrator.get_status(user_id)
    finally:
        await sessionmanager.close()

    print("\nResult:")
    print(f"  Pending suggestions: {status.pending_suggestions_count}")
    print(f"  Still uncategorized: {status.uncategorized_count}")
    if status.error:
        print(f"  Error: [{status.error.code.value}] {status.error.message}")
        return 2
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run AI categorization for a user")
    parser.add_argument("user_id", type=UUID)
    parser.add_argument("--poll", type=float, default=5.0, help="Progress poll interval in seconds")
    args = parser.parse_args()

    sys.exit(asyncio.run(main(args.user_id, args.poll)))
