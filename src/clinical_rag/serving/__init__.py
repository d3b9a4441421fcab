"""
Serving — FastAPI application for the document library.

Tenant identity arrives in the ``X-Tenant-ID`` header; the uploader in
``X-User-ID``.
"""
