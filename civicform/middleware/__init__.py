# Middleware package init
"""
CivicForm Middleware - HTTP Middleware Package
================================================

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [Rate Limit] → [GZip] → [CORS] → Route

    1. Request ID outermost: every later layer, including a 429 rejection,
       sees the correlation id
    2. Logging next: rejected requests are logged and counted in api_usage too
    3. Rate Limit: rejects before any route or database work
"""
