"""
Background Workers for the marketplace payments sync

Workers:
- payments_sync_worker: runs the Etsy payments sync every SYNC_WORKER_INTERVAL_SECONDS
"""

from marketplace_sync.workers.payments_sync_worker import run_payments_sync_once, run_payments_sync_worker_loop
