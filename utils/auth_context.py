from functools import wraps
from flask import g
from models import db
from models.user import ROLE_ADMIN, User
from security.session import get_session_from_request
from services.errors import AuthenticationRequired, Unauthorized

def load_current_user():
    sess, source = get_session_from_request()
    if not sess:
        g.user = None
        g.session = None
        g.auth_source = None
        return
    g.session = sess
    g.auth_source = source
    g.user = db.session.get(User, sess.user_id)

def has_role(role_name: str) -> bool:
    user = getattr(g, "user", None)
    return user is not None and role_name in user.role_names()

def owner_scope():
    """
    User id that booking and payment lookups are restricted to, or None
    for admins, who may read any customer's records.
    """
    return None if has_role(ROLE_ADMIN) else g.user.id

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            raise AuthenticationRequired("Authentication required")
        return fn(*args, **kwargs)
    return wrapper

def require_roles(*role_names: str):
    """
    Usage: @require_roles("ADMIN")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = getattr(g, "user", None)
            if user is None:
                raise AuthenticationRequired("Authentication required")
            if not user.role_names().intersection(role_names):
                raise Unauthorized("This action needs one of the roles: " + ", ".join(role_names))
            return fn(*args, **kwargs)
        return wrapper
    return decorator
