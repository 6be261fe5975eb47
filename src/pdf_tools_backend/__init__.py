"""
PDF Tools Backend - REST API for one-shot PDF transformations

This package provides a FastAPI-based web service that wraps pre-installed
command-line PDF tools behind a small HTTP API. It enables:

- Page operations: merge, split, reorder, rotate, crop, stamp
- Optimization, repair, OCR and PDF/A conversion
- Encryption, decryption and permanent redaction
- Conversion between PDF and office, image, text and HTML formats
- Page thumbnails rendered in the background and on demand

Every request runs in its own job directory; results are returned as download
URLs served by the same process, and a background sweep removes old jobs.

Key Components:
    - main: FastAPI application, error mapping and route registration
    - operations: One handler per PDF operation
    - artifacts: Download and preview file server
    - job_store: Job directory allocation, leasing and retention sweep
    - tools: External program invocation and output naming rules
    - previews: Thumbnail rendering
    - configuration: Config loading and merging logic

Usage:
    Run the API server with:
        uvicorn pdf_tools_backend.main:app --host 0.0.0.0 --port 8080
"""
