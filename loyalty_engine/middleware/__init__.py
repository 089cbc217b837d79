"""
Middleware package for the loyalty engine.
"""
from .auth import (
    require_organization,
    require_admin_key,
    require_cron_secret,
    get_organization_from_request,
)

__all__ = [
    'require_organization',
    'require_admin_key',
    'require_cron_secret',
    'get_organization_from_request',
]
