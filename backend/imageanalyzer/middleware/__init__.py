# Middleware package init
"""
ImageAnalyzer Backend: Middleware Package
==========================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain:
    Request → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Request ID first, so every log line of the request carries it
    2. Logging measures the full handling time and the final status
    3. GZip and CORS are Starlette's own middlewares

    Responses pass through the chain in reverse order.
"""
