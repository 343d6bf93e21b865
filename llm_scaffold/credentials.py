"""Pre-flight API key validation.

A fast, local check that a key is present and shaped like a provider key.
No network call is made; a key that passes may still be rejected by the
server, which the LLM client reports as ``InvalidCredential``.
"""

from __future__ import annotations

import os
import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, SecretStr

from .config import CredentialRules
from .errors import CredentialError, CredentialErrorKind


class ValidKey(BaseModel):
    """A key that passed validation. The secret never shows up in reprs."""
    model_config = ConfigDict(frozen=True)

    secret: SecretStr

    def reveal(self) -> str:
        return self.secret.get_secret_value()


def resolve_api_key(explicit: Optional[str], env_var: str) -> Optional[str]:
    """Return the explicitly supplied key, falling back to *env_var*."""
    if explicit is not None and explicit.strip():
        return explicit
    return os.environ.get(env_var)


def validate_credential(key: Optional[str], rules: Optional[CredentialRules] = None) -> ValidKey:
    """Check that *key* is present and matches the provider's key shape.

    Raises:
        CredentialError: ``missing`` for an absent/blank key, ``malformed``
            when prefix, length or character set do not match *rules*.
    """
    rules = rules or CredentialRules()
    if key is None or not key.strip():
        raise CredentialError(CredentialErrorKind.MISSING, "no API key was supplied")

    candidate = key.strip()
    if not candidate.startswith(rules.prefix):
        raise CredentialError(
            CredentialErrorKind.MALFORMED,
            f"API key must start with {rules.prefix!r}",
        )
    if not rules.min_length <= len(candidate) <= rules.max_length:
        raise CredentialError(
            CredentialErrorKind.MALFORMED,
            f"API key length must be between {rules.min_length} and {rules.max_length} characters",
        )
    body = candidate[len(rules.prefix):]
    if not re.fullmatch(f"[{rules.allowed_chars}]+", body):
        raise CredentialError(
            CredentialErrorKind.MALFORMED,
            "API key contains unexpected characters",
        )
    return ValidKey(secret=SecretStr(candidate))
