from __future__ import annotations

from typing import Any, Protocol

from fastapi import HTTPException, status

from media_pipeline.api.deps import Identity
from media_pipeline.jobs.models import MediaItem
from media_pipeline.jobs.store import MediaStore


class AccessPolicy(Protocol):
    def can_access_media(self, ident: Identity, item: MediaItem, action: str) -> bool: ...

    def can_watch_user(self, ident: Identity, user_id: str) -> bool: ...


class AllowAll:
    def can_access_media(self, ident: Identity, item: MediaItem, action: str) -> bool:
        return True

    def can_watch_user(self, ident: Identity, user_id: str) -> bool:
        return True


class OwnerOnly:
    """Owners see their own items; unowned items are readable by anyone."""

    def can_access_media(self, ident: Identity, item: MediaItem, action: str) -> bool:
        if not item.owner_id:
            return action == "read"
        return bool(ident.user_id) and ident.user_id == item.owner_id

    def can_watch_user(self, ident: Identity, user_id: str) -> bool:
        return bool(ident.user_id) and ident.user_id == str(user_id)


def get_policy(state: Any) -> AccessPolicy:
    policy = getattr(state, "access_policy", None)
    return policy if policy is not None else AllowAll()


def require_media_access(
    *,
    store: MediaStore,
    ident: Identity,
    policy: AccessPolicy,
    media_id: str | None = None,
    item: MediaItem | None = None,
    action: str = "read",
) -> MediaItem:
    if item is None:
        if not media_id:
            raise HTTPException(status_code=404, detail="Media not found")
        item = store.get(str(media_id))
    if item is None:
        raise HTTPException(status_code=404, detail="Media not found")
    if not policy.can_access_media(ident, item, action):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return item
