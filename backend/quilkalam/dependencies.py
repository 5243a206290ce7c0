"""
Quilkalam Backend — Request Dependencies
=========================================

What:  FastAPI dependencies shared by the routers.
How:   get_current_identity reads `Authorization: Bearer <token>` and
       resolves it through the identity service. Routes that need a caller
       declare `identity: Identity = Depends(get_current_identity)` and pass
       the Identity on to the services explicitly.
"""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from quilkalam.exceptions import UnauthenticatedError
from quilkalam.services.identity_service import Identity, identity_service

# auto_error=False: a missing header becomes UnauthenticatedError (401 with
# our error body) instead of FastAPI's own 403.
bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Identity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise UnauthenticatedError("Authentication required")
    return identity_service.verify_token(credentials.credentials)
