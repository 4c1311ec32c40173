"""
deepcheck – media-authentication backend.

Entry point:  deepcheck.main:app  (FastAPI ASGI application)

Sub-packages:
    db          Persistence interface and in-memory store
    detector    Reality Defender client, response normaliser, fallback policy
    forensic    Human-readable result explanations
    storage     Blob storage backends and the media uploader
"""
