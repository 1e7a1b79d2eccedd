"""idbridge - enterprise identity federation: SAML, OIDC and directory sync."""

__version__ = "0.1.0"
