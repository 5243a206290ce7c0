"""
Quilkalam Backend — Middleware Package
=======================================

What:  Cross-cutting concerns applied to every request.

Middleware Chain (order matters!):
    Request → [Rate Limit] → [Request ID] → [Logging] → [GZip] → [CORS] → Route Handler

    1. Rate Limit first: abusive clients are rejected before any work
    2. Request ID: correlation ID for log lines and error bodies
    3. Logging: method, path, status and duration under that ID

Responses travel the chain in reverse, so the request ID header is set and
the access log line is written after the route has produced its status.
"""
