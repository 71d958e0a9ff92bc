from __future__ import annotations

import re

_DELIMITERS = re.compile(r"[;,\s]+")


def parse_recipients(value: str | None) -> list[str]:
    """Split a free-text recipient list into unique addresses.

    Entries may be separated by ``;``, ``,``, newlines or spaces. Duplicates are
    dropped case-insensitively and the first spelling is kept.
    """
    if not value:
        return []
    seen: set[str] = set()
    recipients: list[str] = []
    for raw in _DELIMITERS.split(value):
        candidate = raw.strip()
        if not candidate:
            continue
        key = candidate.casefold()
        if key in seen:
            continue
        seen.add(key)
        recipients.append(candidate)
    return recipients


def invalid_recipients(value: str | None) -> list[str]:
    invalid: list[str] = []
    for address in parse_recipients(value):
        local, _, domain = address.partition("@")
        if not local or not domain or "@" in domain:
            invalid.append(address)
    return invalid
