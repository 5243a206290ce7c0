"""
Quilkalam Backend — User Service
=================================

What:  Registration, login and profile management.
Who:   Called by routes/auth.py and routes/users.py.

Duplicate registrations are caught twice: a lookup gives the friendly
error on the common path, and the UNIQUE(phone_number) constraint turns a
racing duplicate into the same ConflictError.
"""

import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from quilkalam.exceptions import (
    ConflictError,
    DatabaseError,
    NotFoundError,
    UnauthenticatedError,
    ValidationError,
)
from quilkalam.models.user import User, utcnow
from quilkalam.schemas.user import (
    AuthResponse,
    LoginRequest,
    ProfileUpdate,
    RegisterRequest,
    UserProfile,
    UserSummary,
)
from quilkalam.services.blob_base import BlobStore, is_inline_image
from quilkalam.services.blob_service import blob_store
from quilkalam.services.identity_service import Identity, IdentityService, identity_service
from quilkalam.services.partial_update import USER_FIELDS, PartialUpdate

logger = logging.getLogger(__name__)

PROFILE_IMAGE_NAMESPACE = "quilkalam/profiles"


class UserService:
    """
    Account operations.

    Args:
        identity:  Token/password collaborator (defaults to the singleton).
        blobs:     Image store for profile pictures.
    """

    def __init__(
        self,
        identity: IdentityService = identity_service,
        blobs: BlobStore = blob_store,
    ):
        self.identity = identity
        self.blobs = blobs

    def _auth_response(self, user: User) -> AuthResponse:
        token = self.identity.issue_token(
            Identity(user_id=user.id, phone_number=user.phone_number)
        )
        return AuthResponse(user=UserSummary.model_validate(user), token=token)

    async def register(self, db: AsyncSession, payload: RegisterRequest) -> AuthResponse:
        existing = await db.scalar(
            select(User.id).where(User.phone_number == payload.phone_number)
        )
        if existing is not None:
            raise ConflictError(
                "Phone number already registered",
                context={"field": "phoneNumber"},
            )

        user = User(
            phone_number=payload.phone_number,
            password_hash=self.identity.hash_password(payload.password),
            display_name=payload.display_name,
        )
        try:
            # Savepoint: a racing duplicate must not poison the outer transaction
            async with db.begin_nested():
                db.add(user)
        except IntegrityError:
            raise ConflictError(
                "Phone number already registered",
                context={"field": "phoneNumber"},
            )

        logger.info("User registered: %s", user.id)
        return self._auth_response(user)

    async def login(self, db: AsyncSession, payload: LoginRequest) -> AuthResponse:
        user = await db.scalar(
            select(User).where(
                User.phone_number == payload.phone_number,
                User.is_active.is_(True),
            )
        )
        # Same message for unknown phone and wrong password
        if user is None or not self.identity.verify_password(payload.password, user.password_hash):
            raise UnauthenticatedError("Invalid phone number or password")

        logger.info("User logged in: %s", user.id)
        return self._auth_response(user)

    async def get_profile(self, db: AsyncSession, identity: Identity) -> UserProfile:
        user = await db.get(User, identity.user_id)
        if user is None:
            raise NotFoundError(resource="user", resource_id=str(identity.user_id))
        return UserProfile.model_validate(user)

    async def update_profile(
        self,
        db: AsyncSession,
        identity: Identity,
        payload: ProfileUpdate,
    ) -> UserProfile:
        """
        Sparse profile update.

        Raises:
            ValidationError: No recognized field was sent
            NotFoundError:   The caller's account no longer exists

        A newly stored profile image is removed again when the row is not
        updated.
        """
        overrides = {}
        if "profile_image" in payload.model_fields_set and is_inline_image(payload.profile_image):
            stored = await self.blobs.store_image(payload.profile_image, PROFILE_IMAGE_NAMESPACE)
            overrides["profile_image"] = stored.url

        try:
            return await self._write_profile(db, identity, payload, overrides)
        except Exception:
            if "profile_image" in overrides:
                await self.blobs.cleanup_image(overrides["profile_image"])
            raise

    async def _write_profile(
        self,
        db: AsyncSession,
        identity: Identity,
        payload: ProfileUpdate,
        overrides: dict,
    ) -> UserProfile:
        values = PartialUpdate(USER_FIELDS).collect(payload, overrides)
        if not values:
            raise ValidationError("No fields to update", field="body")

        try:
            user = await db.scalar(
                update(User)
                .where(User.id == identity.user_id)
                .values({**values, User.updated_at: utcnow()})
                .returning(User)
            )
        except SQLAlchemyError as e:
            logger.error("Database error updating profile %s: %s", identity.user_id, str(e))
            raise DatabaseError(
                message="Could not update the profile. Please try again.",
                context={"user_id": str(identity.user_id)},
            )

        if user is None:
            raise NotFoundError(resource="user", resource_id=str(identity.user_id))
        return UserProfile.model_validate(user)


# ── Singleton Instance ────────────────────────────────────────────────────
user_service = UserService()
