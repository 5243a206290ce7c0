"""
Quilkalam Backend — API Routes Package
=======================================

What:  HTTP route handlers, one module per resource.

Route Inventory:
    - auth.py:              POST /api/auth/register, /api/auth/login
    - users.py:             GET/PUT /api/user/profile
    - projects.py:          /api/projects, /api/projects/publish, /api/projects/{id}
    - items.py:             /api/projects/{id}/chapters[/batch|/{chapterId}]
    - likes.py:             /api/likes
    - follows.py:           /api/follows
    - comments.py:          /api/comments
    - reading_progress.py:  /api/reading-progress
    - uploads.py:           POST /api/upload/image, GET /api/files/{path}
    - health.py:            GET /health

Design Principle:
    Routes are THIN: extract the request, resolve the caller's Identity,
    call a service, return its response model. Business rules live in the
    services so they can be tested without HTTP.
"""
