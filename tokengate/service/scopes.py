"""Scope model: sets of capability strings and containment checks.

Scopes are carried as order-preserving, de-duplicated tuples so that error
messages can name the *first* offending capability deterministically, while
comparisons remain pure set containment.
"""

from __future__ import annotations

from typing import Iterable, Optional, Tuple

from tokengate.service.errors import InsufficientScope, ScopeNotGranted, UnknownScope

SCOPE_DELIMITER = ","

Scope = Tuple[str, ...]


def normalize_scope(values: Optional[Iterable[str]]) -> Scope:
    """Strip, drop blanks and de-duplicate while keeping first-seen order."""
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    seen: dict[str, None] = {}
    for value in values:
        item = value.strip()
        if item:
            seen.setdefault(item, None)
    return tuple(seen)


def parse_scope(text: Optional[str]) -> Scope:
    """Decode the delimited storage encoding."""
    if not text:
        return ()
    return normalize_scope(text.split(SCOPE_DELIMITER))


def serialize_scope(values: Iterable[str]) -> str:
    return SCOPE_DELIMITER.join(normalize_scope(values))


def has_scope(token_scope: Iterable[str], required_scope: Optional[Iterable[str]]) -> None:
    """Raise ``InsufficientScope`` unless every required capability is held.

    An empty requirement always passes (any authenticated caller).
    """
    held = set(normalize_scope(token_scope))
    for capability in normalize_scope(required_scope):
        if capability not in held:
            raise InsufficientScope(capability)


def can_request_scope(user_scope: Iterable[str], requested_scope: Iterable[str]) -> None:
    """Raise ``ScopeNotGranted`` if the request exceeds what the user holds."""
    granted = set(normalize_scope(user_scope))
    for capability in normalize_scope(requested_scope):
        if capability not in granted:
            raise ScopeNotGranted(capability)


def validate_vocabulary(values: Iterable[str], vocabulary: Iterable[str]) -> Scope:
    """Return the normalized scope, rejecting capabilities outside ``vocabulary``."""
    known = set(vocabulary)
    scope = normalize_scope(values)
    for capability in scope:
        if capability not in known:
            raise UnknownScope(capability)
    return scope


__all__ = [
    "Scope",
    "SCOPE_DELIMITER",
    "normalize_scope",
    "parse_scope",
    "serialize_scope",
    "has_scope",
    "can_request_scope",
    "validate_vocabulary",
]
