#!/usr/bin/env python3
"""
Deterministic container and volume naming.

Names are derived only from their ordered parts, so a re-run of the same
job finds (and replaces) the container and volumes of the previous run.
"""

import re

_UNSAFE = re.compile(r"[^a-zA-Z0-9]")
_MATRIX_SUFFIX = re.compile(r"-[0-9]+$")


def trim_to_len(s: str, length: int) -> str:
    if length < 0:
        length = 0
    return s[:length]


def create_container_name(*parts: str) -> str:
    """Build a daemon-safe name from ordered parts.

    Every part but the last is cut to ``30 // len(parts) - 1`` characters. A
    trailing ``-<digits>`` on such a part (a matrix job index) is kept intact
    and its length is taken out of that budget.
    """
    name = []
    part_len = 30 // len(parts) - 1
    for i, part in enumerate(parts):
        if i == len(parts) - 1:
            name.append(_UNSAFE.sub("-", part))
            continue
        suffix = _MATRIX_SUFFIX.search(part)
        if suffix:
            remainder = part[: suffix.start()]
            name.append(trim_to_len(_UNSAFE.sub("-", remainder), part_len - len(suffix.group(0))))
            name.append(suffix.group(0))
        else:
            name.append(trim_to_len(_UNSAFE.sub("-", part), part_len))

    joined = "-".join(name).strip("-")
    while "--" in joined:
        joined = joined.replace("--", "-")
    return joined.strip("-")
