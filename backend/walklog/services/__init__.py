# Services package init
"""
WalkLog Backend — Services Layer
==================================

What:  The image pipeline itself, independent of HTTP.

Service Inventory:
    - format_sniffer:   True source format (incl. HEIC detection) and header probe
    - heic_converter:   HEIC/HEIF → maximum-quality JPEG (pillow-heif)
    - image_validator:  Size / format / dimension policy
    - image_optimizer:  Resize, rotate, re-encode, strip metadata (Pillow)
    - blob_store:       S3-compatible object store gateway (boto3)
    - image_urls:       Object key → same-origin proxy URL
    - image_service:    Orchestrates upload, replace and delete

Only image_service and blob_store are async; the rest are plain functions
over bytes and can be used from scripts or tests directly.
"""
