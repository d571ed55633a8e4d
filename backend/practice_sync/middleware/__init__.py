"""
PracticeSync — HTTP Middleware
================================

Execution order for a request (last added in create_app runs first):
    RateLimit (trigger only) → RequestID → Logging → CORS → route
"""
