# Routes package init
"""
CivicForm Middleware - API Routes Package
===========================================

Route Inventory:
    - structures.py:  POST/GET /api/webform/{id}/structure, POST /api/webhook
    - submissions.py: POST /api/webform/{id}/submission,
                      POST /api/webform/submissions,
                      GET  /api/submissions/pending,
                      PATCH /api/submissions/{id}/status
    - admin.py:       /api/settings, /api/analytics/*, /api/logs/errors
    - health.py:      GET /health

Routes stay thin: extract request data, call a service, return its model.
"""
