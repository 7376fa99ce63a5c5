"""
Authentication and authorization package.

Provides:
- OAuth2 authorization code exchange and Graph profile lookup
- Server-side session store with 24-hour expiry
- Session-cookie authentication and role-based access control dependencies
- ``initialize_auth`` (in :mod:`auth.setup`) to wire it all into an app
"""
