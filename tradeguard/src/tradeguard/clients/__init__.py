"""
Client utilities for interacting with external services.

This package provides the settlement ledger client, with timeout and
retry handling, and the authentication providers that sign its requests.
"""

from .auth_providers import AuthProvider, BecknSignatureProvider, UnsignedProvider  # noqa: F401
from .ledger_client import LedgerClient  # noqa: F401
