"""API routers."""

from tenant_admin.routers.organizations import router as organizations_router
from tenant_admin.routers.platform import router as platform_router
