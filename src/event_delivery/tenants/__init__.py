"""
Package: tenants
Description: Tenant destination lookups used by the channel adapters.
"""

from .directory import InMemoryTenantDirectory, TenantDirectory

__all__ = ["InMemoryTenantDirectory", "TenantDirectory"]
