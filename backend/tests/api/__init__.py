"""
API tests package for the PartSync backend.

Contains tests for the HTTP surface:
- Distributor connection (credential validation, configuration, brands)
- Sync runs, status and the job ledger
- Schedules (CRUD)
- Compatibility lookups
- Customer garages (error bodies, capacity, customer-facing messages)
"""
