"""
PracticeSync — Halaxy Sync Engine
===================================

Keeps a local PostgreSQL copy of practitioners, clients and sessions in step
with the Halaxy practice-management system.

    ┌─────────────────────────────────────┐
    │   Routes (FastAPI) / CLI (click)    │  ← trigger, webhook, status, sweep
    ├─────────────────────────────────────┤
    │   SyncService                       │  ← full & incremental reconciliation
    ├──────────────────┬──────────────────┤
    │  HalaxyClient    │  SyncStore /     │
    │  (httpx, FHIR)   │  SyncLogService  │  ← remote reads │ local writes
    ├──────────────────┴──────────────────┤
    │   Transformers (pure)               │  ← FHIR → local records
    └─────────────────────────────────────┘
"""

__version__ = "1.0.0"
