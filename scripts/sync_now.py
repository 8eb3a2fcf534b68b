# scripts/sync_now.py
"""Разовый полный цикл синхронизации из командной строки"""
import argparse
import asyncio
import json
import sys
from shopsync.core.config import settings
from shopsync.core.logging import setup_logging
from shopsync.database import create_tables
from shopsync.engine import build_engine
from shopsync.models.integration import SyncTrigger

async def run(domain: str = None, retry_failed: bool = False) -> dict:
    async with build_engine(settings) as engine:
        if retry_failed:
            for syncer in engine.syncers.values():
                syncer.retry_failed()

        if not await engine.monitor.check():
            return {"status": "skipped", "reason": "cloud unreachable"}

        if domain:
            counters = await engine.orchestrator.sync_domain(domain, SyncTrigger.MANUAL)
            return {"domain": domain, **counters.to_dict()}

        await engine.orchestrator.perform_full_sync(SyncTrigger.MANUAL)
        return engine.orchestrator.snapshot()

def main():
    parser = argparse.ArgumentParser(description="Run a sync cycle")
    parser.add_argument("--domain", help="Sync only this domain")
    parser.add_argument("--retry-failed", action="store_true", help="Re-queue records in error state first")
    args = parser.parse_args()

    setup_logging(settings)
    create_tables()

    result = asyncio.run(run(args.domain, args.retry_failed))
    print(json.dumps(result, indent=2, default=str))
    if result.get("last_sync_error"):
        sys.exit(1)

if __name__ == "__main__":
    main()
