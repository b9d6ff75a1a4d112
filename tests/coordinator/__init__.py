"""
Tiered Reconcile Coordinator Test Suite.

- Bookkeeping tests (pending sets, queues, ledger)
- Worker and retry tests
- Coordinator ordering and cascade scenarios
- Lifecycle tests
"""
