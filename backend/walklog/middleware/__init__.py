# Middleware package init
"""
WalkLog Backend — Middleware Package
======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [Rate Limit] → [CORS] → Route Handler

    - Request ID is assigned before anything logs, so rejected requests
      (429) still carry an X-Request-ID.
    - Logging measures the full duration, rate-limit rejections included.
    - Rate limiting only guards writes; image reads are cached by browsers
      and served straight from the store.
"""
