"""
secrets_manager
================

Loads the ledger signing credentials without requiring them to live in
the process environment.  A value is looked up in ``{NAME}_FILE`` first
(so operators can mount the Ed25519 seed as a Kubernetes or Docker
secret) and then in ``{NAME}`` itself.

Example usage::

    from tradeguard.secrets_manager import get_default_secrets_manager

    secrets = get_default_secrets_manager()
    seed = secrets.get_secret("BECKN_SIGNING_PRIVATE_KEY")
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class BaseSecretsManager:
    """Abstract base class for secrets managers."""

    def get_secret(self, name: str) -> Optional[str]:  # pragma: no cover - override
        """Return the secret value for ``name`` or ``None`` if unavailable."""
        raise NotImplementedError


class EnvFileSecretsManager(BaseSecretsManager):
    """
    Loads secrets from environment variables and optional ``*_FILE`` paths.

    If both ``{name}`` and ``{name}_FILE`` are set, the file takes
    precedence.  Relative file paths are resolved against ``base_path``.
    """

    def __init__(self, base_path: Optional[Path] = None) -> None:
        self.base_path = base_path
        self._cache: Dict[str, Optional[str]] = {}

    def get_secret(self, name: str) -> Optional[str]:
        if name in self._cache:
            return self._cache[name]

        value: Optional[str]
        file_path = os.getenv(f"{name}_FILE")
        if file_path:
            path = Path(file_path)
            if not path.is_absolute() and self.base_path is not None:
                path = self.base_path / path
            try:
                value = path.read_text(encoding="utf-8").strip()
            except OSError as exc:
                logger.warning("Failed to read secret %s from %s: %s", name, path, exc)
                value = None
        else:
            value = os.getenv(name)

        self._cache[name] = value or None
        return self._cache[name]


def get_default_secrets_manager() -> BaseSecretsManager:
    """Return the secrets manager selected by ``SECRETS_BACKEND``.

    Only the ``env`` backend (environment variables and ``*_FILE``
    paths) is supported; unknown values fall back to it with a warning.
    """
    backend = os.getenv("SECRETS_BACKEND", "env").lower()
    if backend != "env":
        logger.warning("Unsupported SECRETS_BACKEND %r; using environment", backend)
    return EnvFileSecretsManager(base_path=Path(os.getenv("SECRETS_BASE_PATH", "/")))


__all__ = [
    "BaseSecretsManager",
    "EnvFileSecretsManager",
    "get_default_secrets_manager",
]
