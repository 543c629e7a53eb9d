#!/usr/bin/env python3
"""
One-shot script to run the Etsy payments sync.

Usage:
    cd backend

    # Sync every active Etsy integration:
    python scripts/run_payments_sync_once.py

    # Sync a single integration:
    python scripts/run_payments_sync_once.py <integration_id>
"""

import sys
import os
import asyncio
import json

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import datetime, timezone
from marketplace_sync.config import settings
from marketplace_sync.services.payments_sync.scheduler import run_marketplace_payments_sync


async def main():
    print("=" * 80)
    print("PAYMENTS SYNC ONE-SHOT RUN")
    print("=" * 80)
    print(f"Timestamp: {datetime.now(timezone.utc).isoformat()}")
    print(f"settings.SYNC_PROVIDER: {settings.SYNC_PROVIDER}")
    print(f"settings.ETSY_API_BASE_URL: {settings.ETSY_API_BASE_URL}")
    print()

    integration_id = sys.argv[1] if len(sys.argv) > 1 else None
    if integration_id:
        print(f"Using provided integration_id: {integration_id}")

    summary = await run_marketplace_payments_sync(integration_id=integration_id)

    print("-" * 40)
    print("RESULT")
    print("-" * 40)
    print(json.dumps(summary.to_dict(), indent=2, default=str))


if __name__ == "__main__":
    asyncio.run(main())
