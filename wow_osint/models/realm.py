"""Realm reference record."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Realm(BaseModel):
    """A realm as known to the store.

    Read-only for the reconciler; written by the realm worker from the
    upstream connected-realm index and cached by ``RealmDirectory``.

    Attributes:
        id: Upstream realm id.
        slug: Canonical slug, e.g. ``"twisted-nether"``.
        name: Canonical (English) display name.
        locale_name: Localized display name, e.g. ``"Гордунни"``.
        locale_slug: Slug of ``locale_name``.
        connected_realm_id: Id of the connected-realm group (auction house).
        region: ``us``, ``eu``, ``kr`` or ``tw``.
        aliases: Extra free-text names that resolve to this realm.
        auctions_timestamp: When the auction house of this connected realm
            was last snapshotted.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    slug: str
    name: str
    locale_name: Optional[str] = None
    locale_slug: Optional[str] = None
    connected_realm_id: int
    region: str = "eu"
    aliases: list[str] = []
    auctions_timestamp: Optional[datetime] = None
