"""Release trigger matching on pushed references."""

from __future__ import annotations

import re

RELEASE_TAG_PATTERN = re.compile(r"^v?[0-9]+\.[0-9]+\.[0-9]+$")
TAG_REF_PREFIX = "refs/tags/"


def match_release_tag(ref: str) -> str | None:
    """Return the release version for *ref*, or None if it must not publish.

    The version is the tag text itself, leading ``v`` included, so artifact
    names follow the tag that was pushed.
    """
    name = ref.removeprefix(TAG_REF_PREFIX)
    if RELEASE_TAG_PATTERN.fullmatch(name):
        return name
    return None
