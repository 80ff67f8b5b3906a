"""
Identity converters shared by the scheduler, reconciler and workers.

``to_guid`` is the root of every dedup guarantee: the same character or
guild always maps to the same guid, and therefore to the same queue job id.
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from collections.abc import Iterable
from typing import Optional

_SEPARATORS = re.compile(r"[\W_]+")
_APOSTROPHES = re.compile(r"['’`]")


def to_slug(value: str) -> str:
    """Kebab-case ``value``: lowercase, accents folded, ``-`` separated.

    Non-latin letters (Cyrillic realm and character names) are kept as
    lowercase letters rather than dropped.

    >>> to_slug("Mal'Ganis")
    'malganis'
    >>> to_slug("Thrall@Twisted Nether")
    'thrall-twisted-nether'
    """
    decomposed = unicodedata.normalize("NFKD", value)
    folded = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    folded = _APOSTROPHES.sub("", folded.lower())
    return _SEPARATORS.sub("-", folded).strip("-")


def to_guid(name: str, realm: str) -> str:
    """Canonical identity of a character or guild on a realm."""
    return to_slug(f"{name}@{realm}")


def capitalize(value: str) -> str:
    """Upper-case the first character, leave the rest alone."""
    return value[:1].upper() + value[1:]


def family_hash(values: Iterable[str]) -> Optional[str]:
    """Stable 8-hex-char fingerprint of an unordered collection.

    Characters on the same account share collections (pets), so equal
    fingerprints mark two characters as one family. Empty input has no
    fingerprint.
    """
    items = sorted({str(v) for v in values if v is not None and str(v) != ""})
    if not items:
        return None
    digest = hashlib.sha256("|".join(items).encode("utf-8")).hexdigest()
    return digest[:8]
