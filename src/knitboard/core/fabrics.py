from __future__ import annotations

import re
from collections.abc import Iterable, Sequence

from knitboard.core.models import Fabric, ImportRow


# Words dropped from fabric names when building the short display name.
DEFAULT_STRIP_KEYWORDS: tuple[str, ...] = ("جاكار ", "خام", "ليكرا ", "بدون ")

_CODE_RE = re.compile(r"^\[(.*?)\]")
_EMPTY_PARENS_RE = re.compile(r"\(\s*\)")
_SPACES_RE = re.compile(r"\s+")


def parse_fabric_name(full_name: str, *, keywords: Sequence[str] = DEFAULT_STRIP_KEYWORDS) -> tuple[str, str]:
    """Split a master-data fabric name into ``(code, short_name)``.

    ``"[F-12] خام Single Jersey ()"`` -> ``("F-12", "Single Jersey")``
    """
    name = str(full_name or "").strip()
    if not name:
        return "", ""

    code = ""
    short = name
    m = _CODE_RE.match(name)
    if m:
        code = m.group(1).strip()
        short = name[m.end():].strip()

    for kw in keywords:
        if kw:
            short = short.replace(kw, "").strip()

    short = _EMPTY_PARENS_RE.sub("", short).strip()
    short = _SPACES_RE.sub(" ", short).strip()
    return code, short


def keywords_to_text(keywords: Iterable[str]) -> str:
    """One keyword per line. Surrounding spaces are part of a keyword and kept."""
    return "\n".join(keywords)


def keywords_from_text(text: str | None) -> list[str]:
    """Inverse of ``keywords_to_text``; blank lines are dropped."""
    return [line for line in str(text or "").splitlines() if line.strip()]


def find_unknown_fabrics(rows: Iterable[ImportRow], known: Iterable[Fabric | str]) -> list[str]:
    """Fabric names used by the import that are missing from the master list.

    Exact name comparison, first-seen order.
    """
    known_names = {k.name if isinstance(k, Fabric) else str(k) for k in known}
    unknown: list[str] = []
    for row in rows:
        name = row.fabric
        if name and name not in known_names and name not in unknown:
            unknown.append(name)
    return unknown


def new_fabric(name: str, *, keywords: Sequence[str] = DEFAULT_STRIP_KEYWORDS) -> Fabric:
    code, short = parse_fabric_name(name, keywords=keywords)
    return Fabric(name=str(name).strip(), code=code, short_name=short)


class FabricLookup:
    """Resolve raw fabric names to their short display form."""

    def __init__(self, fabrics: Iterable[Fabric]):
        self._by_name = {f.name: f for f in fabrics}

    def display_name(self, raw_name: str) -> str:
        fabric = self._by_name.get(raw_name)
        if fabric is None:
            return raw_name
        return fabric.display_name

    def __contains__(self, name: object) -> bool:
        return name in self._by_name
