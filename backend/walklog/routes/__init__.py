# Routes package init
"""
WalkLog Backend — API Routes Package
======================================

What:  HTTP route handlers for the image pipeline.

Route Inventory:
    - images.py:  POST   /api/images/upload      (validate, optimize, store)
                  GET    /api/images/{key:path}  (proxy stored bytes)
                  DELETE /api/images/{key:path}  (best-effort removal)
    - health.py:  GET    /health                 (service + object store status)

Routes only translate HTTP to service calls; the pipeline lives in
walklog.services and is tested without HTTP.
"""
