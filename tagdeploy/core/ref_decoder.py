"""Ref decoder — splits a release tag into target(s) and version.

Tag layout is ``<target>[/<target>...]/<version>``: the segment after the
last separator is the version, everything before it the target. A target
with several segments is a matrix release, one image per sub-target.
"""

from __future__ import annotations

from tagdeploy.errors import MalformedRefError
from tagdeploy.models.release import DecodedRef

_TAG_PREFIX = "refs/tags/"


def decode(ref: str, separator: str = "/") -> DecodedRef:
    """Decode *ref* into a ``DecodedRef``.

    Raises ``MalformedRefError`` when the separator is missing or any
    segment is empty.
    """
    name = ref.removeprefix(_TAG_PREFIX)
    target, found, version = name.rpartition(separator)
    if not found:
        raise MalformedRefError(ref, f"missing separator {separator!r}")
    if not target:
        raise MalformedRefError(ref, "empty target segment")
    if not version:
        raise MalformedRefError(ref, "empty version segment")

    targets = tuple(target.split(separator))
    if any(not t for t in targets):
        raise MalformedRefError(ref, "empty sub-target in matrix")

    return DecodedRef(ref=ref, target=target, version=version, targets=targets)
