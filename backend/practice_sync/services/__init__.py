"""
PracticeSync — Services Layer
===============================

Service Inventory:
    - PracticeManagementClient (abstract): what the sync engine needs from Halaxy
    - HalaxyClient: FHIR client over httpx (paging, throttling, retries)
    - TokenManager: OAuth client-credentials token cache
    - transformers: pure FHIR → local record mapping
    - SyncStore: upserts keyed by Halaxy ids, MHCP recompute
    - SyncLogService: audit rows and sync health status
    - SyncService: full and incremental reconciliation
"""
