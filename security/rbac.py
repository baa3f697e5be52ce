from functools import wraps
from flask import g

from utils.errors import Forbidden, Unauthenticated

CUSTOMER = "CUSTOMER"
EMPLOYEE = "EMPLOYEE"
ADMIN = "ADMIN"
STAFF_ROLES = (EMPLOYEE, ADMIN)

def user_has_role(user, *role_names: str) -> bool:
    if user is None:
        return False
    names = user.role_names
    # ADMIN passes every role check
    return ADMIN in names or bool(names.intersection(role_names))

def user_is_staff(user) -> bool:
    return user_has_role(user, *STAFF_ROLES)

def has_role(*role_names: str) -> bool:
    return user_has_role(getattr(g, "user", None), *role_names)

def is_staff() -> bool:
    return has_role(*STAFF_ROLES)

def require_roles(*role_names: str):
    """
    Usage: @require_roles("EMPLOYEE", "ADMIN")
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if getattr(g, "user", None) is None:
                raise Unauthenticated()
            if not has_role(*role_names):
                raise Forbidden()
            return fn(*args, **kwargs)
        return wrapper
    return decorator

def require_staff(fn):
    return require_roles(*STAFF_ROLES)(fn)
