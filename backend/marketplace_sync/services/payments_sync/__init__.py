"""Etsy payments/orders sync job.

One run loads every active Etsy integration, makes sure each has a valid
access token, and mirrors the shop's payments into the local ``orders`` and
``payments`` tables (upserts on natural keys, so runs are idempotent).

The job is not scheduled here. It is started by the HTTP trigger in
`marketplace_sync.routers.sync` (an external cron hits it) or by the loop in
`marketplace_sync.workers.payments_sync_worker`. The entry point is
`scheduler.run_marketplace_payments_sync`.
"""
