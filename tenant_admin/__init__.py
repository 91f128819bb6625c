"""Tenant administration core: lifecycle, hierarchy and RBAC for multi-tenant orgs."""
