"""
CivicForm Middleware - Application Package
============================================

Store-and-forward middleware between a public form frontend and a backend
that cannot accept inbound traffic. The backend pushes form structures here
and polls for queued submissions; the frontend reads structures and enqueues
submissions.

Layers:

    ┌─────────────────────────────────────┐
    │     Routes + security (HTTP)        │  ← status codes, auth gates
    ├─────────────────────────────────────┤
    │     Services (business logic)       │  ← validation, queue semantics
    ├─────────────────────────────────────┤
    │     Models & Schemas (data)         │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │     Database (persistence)          │  ← async SQLAlchemy sessions
    └─────────────────────────────────────┘
"""

__version__ = "2.0.0"
