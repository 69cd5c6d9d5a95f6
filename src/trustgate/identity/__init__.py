"""OAuth2 PKCE identity broker.

Public API: GoogleIdentityBroker, GoogleIdentityRecord, IdentityError, SignInStart
Internal: pkce, loopback
"""

from trustgate.identity.broker import GoogleIdentityBroker
from trustgate.identity.types import GoogleIdentityRecord, IdentityError, SignInStart

__all__ = ["GoogleIdentityBroker", "GoogleIdentityRecord", "IdentityError", "SignInStart"]
