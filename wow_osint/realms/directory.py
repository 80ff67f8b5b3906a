"""
In-memory realm lookup.

Players, rosters and the CLI name realms in many ways: ``"1305"``,
``"Twisted Nether"``, ``"twisted-nether"``, ``"Гордунни"``, ``"gordunni"``.
``RealmDirectory`` resolves any of them to one ``Realm``.

Lookup order for a query ``q``:

  1. ``q`` as-is against id, name, slug, locale name, locale slug (and aliases)
  2. ``to_slug(q)`` against slug and locale slug
  3. ``q.lower()`` against every map

A total miss returns ``None``; the caller decides whether that is a
``NotFoundError``.

The first lookup triggers the load; concurrent callers wait on the same
lock, so the loader runs once. ``reload()`` rebuilds the maps after the
realm worker has written new rows.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Optional

from wow_osint.models.realm import Realm
from wow_osint.utils.converters import to_slug

logger = logging.getLogger(__name__)

RealmLoader = Callable[[], Iterable[Realm]]

_MAP_NAMES = ("id", "name", "slug", "locale_name", "locale_slug")


class RealmDirectory:
    """Multi-key realm index built from ``loader``.

    Args:
        loader: Returns every known realm, typically
            ``RealmRepository(conn).list_all``.
    """

    def __init__(self, loader: RealmLoader) -> None:
        self._loader = loader
        self._lock = threading.Lock()
        self._loaded = False
        self._maps: dict[str, dict[str, Realm]] = {name: {} for name in _MAP_NAMES}
        self._realms: list[Realm] = []

    # ── Loading ───────────────────────────────────────────────────────────────

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._lock:
            if not self._loaded:
                self._load()

    def _load(self) -> None:
        realms = list(self._loader())
        maps: dict[str, dict[str, Realm]] = {name: {} for name in _MAP_NAMES}

        for realm in realms:
            keys = {
                "id": [str(realm.id)],
                "name": [realm.name, *realm.aliases],
                "slug": [realm.slug],
                "locale_name": [realm.locale_name] if realm.locale_name else [],
                "locale_slug": [realm.locale_slug] if realm.locale_slug else [],
            }
            for map_name, values in keys.items():
                for value in values:
                    maps[map_name].setdefault(value, realm)
                    maps[map_name].setdefault(value.lower(), realm)

        self._maps = maps
        self._realms = realms
        self._loaded = True
        logger.info("Realm directory loaded: %d realm(s)", len(realms))

    def reload(self) -> None:
        """Rebuild every map from the loader."""
        with self._lock:
            self._load()

    # ── Lookup ────────────────────────────────────────────────────────────────

    def find_realm(self, query: str | int) -> Optional[Realm]:
        """Resolve a free-text realm identifier, or ``None``."""
        self._ensure_loaded()
        text = str(query).strip()
        if not text:
            return None

        for map_name in _MAP_NAMES:
            realm = self._maps[map_name].get(text)
            if realm is not None:
                return realm

        slug = to_slug(text)
        for map_name in ("slug", "locale_slug"):
            realm = self._maps[map_name].get(slug)
            if realm is not None:
                return realm

        lowered = text.lower()
        for map_name in _MAP_NAMES:
            realm = self._maps[map_name].get(lowered)
            if realm is not None:
                return realm

        logger.debug("Realm '%s' not found", text)
        return None

    @property
    def size(self) -> int:
        self._ensure_loaded()
        return len(self._realms)

    def all_realms(self) -> list[Realm]:
        self._ensure_loaded()
        return list(self._realms)
