"""Trust boundary for a local agent gateway.

Encrypted secret storage, human-in-the-loop tool approvals, and a Google
OAuth2 PKCE identity broker, exposed over a small FastAPI RPC surface.
"""

__version__ = "0.1.0"
