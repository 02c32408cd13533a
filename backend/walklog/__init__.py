"""
WalkLog Backend — Image Pipeline Package
==========================================

What: The image ingestion and serving backend of the WalkLog activity logger.
Who:  Imported by uvicorn (`walklog.main:app`), pytest, and any caller that
      needs to turn an uploaded photo into a stored `image_key`.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← upload / proxy / delete / health
    ├─────────────────────────────────────┤
    │     ImageService (Orchestration)    │  ← validate → optimize → upload
    ├─────────────────────────────────────┤
    │  Sniffer · HEIC · Validator · Opt.  │  ← pure byte-in / byte-out work (Pillow)
    ├─────────────────────────────────────┤
    │     BlobStoreGateway (Storage)      │  ← S3-compatible object store (boto3)
    └─────────────────────────────────────┘

    Nothing below the routes knows about HTTP; nothing above the gateway
    knows about boto3.
"""

__version__ = "1.0.0"
