"""Key layout and identifier utilities.

Centralizes the storage key format so callers never need to construct or
parse physical keys directly.

Session records:  session/{tenant_id}/{session_key}.record
Cache entries:    cache/{cache_key}.entry
Pending markers:  pending-sync/{key}          (local backend only)

Session keys are ``{tenant_id}__{slug}`` where the slug is derived from the
workflow name: the same (tenant, name) pair always maps to the same key, and
distinct names never share one.
"""

from __future__ import annotations

import hashlib
import re

from .exceptions import SessionValidationError

SESSION_NAMESPACE = "session"
CACHE_NAMESPACE = "cache"
PENDING_NAMESPACE = "pending-sync"

RECORD_SUFFIX = ".record"
ENTRY_SUFFIX = ".entry"

DEFAULT_TENANT_ID = "default"

SESSION_KEY_SEPARATOR = "__"
NAME_DIGEST_LENGTH = 10

_TENANT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]{0,63}$")
_CACHE_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:@-]{0,199}$")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9]+")
_SESSION_SLUG_RE = re.compile(rf"[a-z0-9]+(?:-[a-z0-9]+)*(?:--[0-9a-f]{{{NAME_DIGEST_LENGTH}}})?")


def slugify(name: str) -> str:
    """Key segment for a workflow name, distinct for distinct names.

    A name already in slug form (``slack-alerts``) is used as is. Any other
    name is lower-cased with every non-alphanumeric run collapsed to ``-``,
    then a digest of the exact name is appended after ``--``, so ``My WF``
    and ``my_wf`` never share a key.
    """
    base = _SLUG_STRIP_RE.sub("-", name.strip().lower()).strip("-")
    if not base:
        raise SessionValidationError(f"Workflow name has no usable characters: {name!r}", "name")
    if base == name:
        return base
    digest = hashlib.sha256(name.encode("utf-8")).hexdigest()[:NAME_DIGEST_LENGTH]
    return f"{base}--{digest}"


def validate_tenant_id(tenant_id: str) -> str:
    """Return ``tenant_id`` if it is a valid namespace segment.

    Raises SessionValidationError otherwise.
    """
    if not tenant_id or not _TENANT_RE.match(tenant_id):
        raise SessionValidationError(f"Invalid tenant_id: {tenant_id!r}", "tenant_id")
    return tenant_id


def make_session_key(tenant_id: str | None, name: str) -> str:
    """Generate the stable session key for a (tenant, workflow name) pair."""
    tenant = validate_tenant_id(tenant_id or DEFAULT_TENANT_ID)
    return f"{tenant}{SESSION_KEY_SEPARATOR}{slugify(name)}"


def parse_session_key(session_key: str) -> tuple[str, str]:
    """Split a session key into ``(tenant_id, slug)``.

    Raises SessionValidationError on malformed input.
    """
    tenant, sep, slug = session_key.partition(SESSION_KEY_SEPARATOR)
    if not sep or not _SESSION_SLUG_RE.fullmatch(slug):
        raise SessionValidationError(f"Malformed session key: {session_key!r}", "session_key")
    validate_tenant_id(tenant)
    return tenant, slug


def session_record_key(session_key: str) -> str:
    """Physical key of the record for ``session_key``."""
    tenant, _ = parse_session_key(session_key)
    return f"{SESSION_NAMESPACE}/{tenant}/{session_key}{RECORD_SUFFIX}"


def session_prefix(tenant_id: str) -> str:
    """Prefix under which all records of a tenant live."""
    return f"{SESSION_NAMESPACE}/{validate_tenant_id(tenant_id)}/"


def session_key_from_record_key(record_key: str) -> str | None:
    """Inverse of session_record_key; None for keys that are not session records."""
    parts = record_key.split("/")
    if len(parts) != 3 or parts[0] != SESSION_NAMESPACE or not parts[2].endswith(RECORD_SUFFIX):
        return None
    return parts[2][: -len(RECORD_SUFFIX)]


def validate_cache_key(cache_key: str) -> str:
    """Return ``cache_key`` if it is usable as a file name, e.g. ``nodes-base.slack``."""
    if not cache_key or not _CACHE_KEY_RE.match(cache_key):
        raise SessionValidationError(f"Invalid cache key: {cache_key!r}", "cache_key")
    return cache_key


def cache_entry_key(cache_key: str) -> str:
    """Physical key of the entry for ``cache_key``."""
    return f"{CACHE_NAMESPACE}/{validate_cache_key(cache_key)}{ENTRY_SUFFIX}"


def cache_key_from_entry_key(entry_key: str) -> str | None:
    """Inverse of cache_entry_key; None for keys that are not cache entries."""
    prefix = f"{CACHE_NAMESPACE}/"
    if not entry_key.startswith(prefix) or not entry_key.endswith(ENTRY_SUFFIX):
        return None
    return entry_key[len(prefix) : -len(ENTRY_SUFFIX)]


def pending_marker_key(key: str) -> str:
    """Physical key of the pending-sync marker for ``key``."""
    return f"{PENDING_NAMESPACE}/{key}"


def key_from_pending_marker(marker_key: str) -> str:
    """Inverse of pending_marker_key."""
    return marker_key[len(PENDING_NAMESPACE) + 1 :]


def namespace_of(key: str) -> str:
    """First path segment of a physical key."""
    return key.split("/", 1)[0]
