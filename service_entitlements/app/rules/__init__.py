"""
Entitlement rules package.

- policy: default limits for new users, lazy window reset, and the
  free/premium tier transitions applied before administrative updates.
"""

from .policy import EntitlementPolicy

__all__ = ["EntitlementPolicy"]
