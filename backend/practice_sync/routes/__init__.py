"""
PracticeSync — API Routes
===========================

Route Inventory:
    - sync.py:          POST /api/sync/trigger
                        POST /api/sync/webhook
                        GET  /api/sync/status/{practitioner_id}
    - availability.py:  GET  /api/availability
    - health.py:        GET  /health

Handlers stay thin: parse the request, call SyncService, return its model.
"""
