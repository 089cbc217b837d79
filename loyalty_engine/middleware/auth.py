"""
Request authentication for the loyalty engine API.

- require_organization: resolves the calling organization from the
  X-Organization-ID header or the `organization` query parameter
- require_admin_key: X-Admin-Key must match ADMIN_API_KEY
- require_cron_secret: Authorization: Bearer <CRON_SECRET>

Usage:
    @segments_bp.route('/recalculate', methods=['POST'])
    @require_organization
    def recalculate():
        organization_id = g.organization_id
        ...
"""
import hmac
from functools import wraps
from flask import request, current_app, g

from ..extensions import db
from ..models.organization import Organization
from ..utils.errors import ErrorCode, bad_request, unauthorized, forbidden, not_found


def get_organization_from_request():
    """Organization id from header or query string, or None."""
    raw = request.headers.get('X-Organization-ID') or request.args.get('organization')
    if not raw:
        return None
    try:
        return int(raw)
    except (ValueError, TypeError):
        return None


def _matches_secret(provided: str, expected: str) -> bool:
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode('utf-8'), expected.encode('utf-8'))


def require_organization(f):
    """Set g.organization and g.organization_id for the request."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        organization_id = get_organization_from_request()
        if organization_id is None:
            return bad_request('Organization ID required', ErrorCode.MISSING_FIELD)

        organization = db.session.get(Organization, organization_id)
        if not organization:
            return not_found('Organization not found', ErrorCode.ORGANIZATION_NOT_FOUND)
        if not organization.is_active:
            return forbidden('Organization is inactive')

        g.organization = organization
        g.organization_id = organization.id
        return f(*args, **kwargs)

    return decorated_function


def require_admin_key(f):
    """Admin-only operations (backfills, repairs, retroactive promotion)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        provided = request.headers.get('X-Admin-Key', '')
        if not _matches_secret(provided, current_app.config.get('ADMIN_API_KEY')):
            return forbidden('Admin access required')
        return f(*args, **kwargs)

    return decorated_function


def require_cron_secret(f):
    """External scheduler calls."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get('Authorization', '')
        if not auth_header.startswith('Bearer '):
            return unauthorized()
        if not _matches_secret(auth_header[len('Bearer '):], current_app.config.get('CRON_SECRET')):
            return unauthorized()
        return f(*args, **kwargs)

    return decorated_function
