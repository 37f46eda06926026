"""
Auth module: API key credentials.

Public API:
- CredentialStore: resolve / touch_last_used / create / deactivate
- Tenant, ResolvedCredential: resolution results
- extract_api_key(): header parsing (Bearer first, then x-api-key)
- generate_api_key(), hash_secret()
"""

from app.auth.credentials import (
    API_KEY_PREFIX,
    CredentialStore,
    ResolvedCredential,
    Tenant,
    extract_api_key,
    generate_api_key,
    hash_secret,
)

__all__ = [
    "API_KEY_PREFIX",
    "CredentialStore",
    "ResolvedCredential",
    "Tenant",
    "extract_api_key",
    "generate_api_key",
    "hash_secret",
]
