from __future__ import annotations

import re
import unicodedata

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


def generate_slug(value: str) -> str:
    """
    "Men's Shirts & Tops" -> "men-s-shirts-tops"
    """
    normalized = unicodedata.normalize("NFKD", value or "")
    ascii_only = normalized.encode("ascii", "ignore").decode("ascii")
    return _NON_ALNUM_RE.sub("-", ascii_only.lower()).strip("-")
