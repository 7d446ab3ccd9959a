"""Middleware for request identity."""
from functools import wraps

from flask import g, jsonify, session

from storefront.database import get_session
from storefront.models import AppUser


def load_user():
    """
    Load the current user into g (Flask's per-request global).

    The session's user_id is issued by the identity provider and trusted
    as-is. Sets g.user, g.user_id and g.user_role if authenticated.
    """
    g.user = None
    g.user_id = None
    g.user_role = None

    user_id = session.get('user_id')
    if user_id:
        user = get_session().query(AppUser).filter_by(id=user_id, active=True).first()
        if user:
            g.user = user
            g.user_id = user.id
            g.user_role = user.role


def require_login(f):
    """Decorator: reject anonymous requests with a JSON 401."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if g.get('user') is None:
            return jsonify({'status': 'error', 'message': 'Authentication required'}), 401
        return f(*args, **kwargs)
    return decorated_function


def require_admin(f):
    """Decorator: only admins may call the route."""
    @wraps(f)
    @require_login
    def decorated_function(*args, **kwargs):
        if not g.user.is_admin:
            return jsonify({'status': 'error', 'message': 'Admin access required'}), 403
        return f(*args, **kwargs)
    return decorated_function
