"""
Quilkalam Backend — Services Layer
===================================

What:  Business logic between routes (HTTP) and models (persistence).

Service Inventory:
    - ProjectService:   publish, read, list, edit, delete projects; owns the
                        ownership check and word-count recomputation
    - ItemService:      item tree mutations (single and batch)
    - SocialService:    likes, follows, comments, reading progress
    - UserService:      register, login, profile
    - IdentityService:  password hashing and bearer tokens
    - BlobStore (abstract) / LocalBlobStore: inline image storage
    - partial_update:   sparse UPDATE builder shared by the edit paths

Services are stateless singletons. Each call receives the request's
AsyncSession and, where needed, the caller's Identity explicitly.
"""
