"""Branch naming helpers."""

from __future__ import annotations

import re
from typing import Mapping, Optional

_SEPARATORS = re.compile(r"[\s-]+")


def branch_key(branch: str) -> str:
    """Return a lower-case, underscore separated key for ``branch``.

    ``"Enedina - Nueva España"`` becomes ``"enedina_nueva_españa"``.
    """

    return _SEPARATORS.sub("_", branch.strip().lower())


def display_name(branch: str, mapping: Optional[Mapping[str, str]] = None) -> str:
    """Return the configured display name for ``branch`` or the branch itself."""

    if not mapping:
        return branch
    if branch in mapping:
        return str(mapping[branch])
    key = branch_key(branch)
    for raw_name, label in mapping.items():
        if branch_key(str(raw_name)) == key:
            return str(label)
    return branch
