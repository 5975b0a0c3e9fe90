"""Identifier generation: opaque tokens, tenant join-codes, and slugs."""

from __future__ import annotations

import re
import secrets
import string
import uuid

# 62-symbol alphabet for invitation and verification tokens.
TOKEN_ALPHABET: str = string.ascii_letters + string.digits
TOKEN_LENGTH: int = 48

# Join-codes are read aloud and typed from print: no 0/O, 1/I/L.
TENANT_CODE_ALPHABET: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TENANT_CODE_LENGTH: int = 8

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_FALLBACK_SLUG = "club"
_MAX_SLUG_LENGTH = 100


def new_id() -> str:
    """Return a fresh 32-hex-character primary key."""
    return uuid.uuid4().hex


def random_token(length: int = TOKEN_LENGTH, alphabet: str = TOKEN_ALPHABET) -> str:
    """Return a cryptographically random string drawn from *alphabet*."""
    if length <= 0:
        raise ValueError(f"Token length must be positive, got {length}")
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_tenant_code() -> str:
    """Return a new 8-character tenant join-code."""
    return random_token(TENANT_CODE_LENGTH, TENANT_CODE_ALPHABET)


def normalize_tenant_code(code: str) -> str:
    """Canonicalise user-typed join-codes (trim, uppercase)."""
    return code.strip().upper()


def slugify(value: str) -> str:
    """Convert an organization name into a URL slug.

    Lowercases, collapses every run of non-alphanumeric characters into a
    single hyphen, and trims leading/trailing hyphens.  Names with no
    usable characters fall back to ``"club"``.

    >>> slugify("Acme FC")
    'acme-fc'
    >>> slugify("  St. Mary's -- U12 ")
    'st-mary-s-u12'
    """
    slug = _NON_ALNUM_RE.sub("-", value.strip().lower()).strip("-")
    slug = slug[:_MAX_SLUG_LENGTH].rstrip("-")
    return slug or _FALLBACK_SLUG
