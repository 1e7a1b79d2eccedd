"""Application services."""

from idbridge.services.federation import FederationService, LoginResult
from idbridge.services.scim import SCIMProvisioningService

__all__ = ["FederationService", "LoginResult", "SCIMProvisioningService"]
