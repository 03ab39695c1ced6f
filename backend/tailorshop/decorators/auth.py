from functools import wraps
from flask import g
from tailorshop.services.identity import current_identity


def require_identity(fn):
    """Verify the bearer token and expose the caller as ``g.identity``.

    Role and shop checks are left to the services, which know the target.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        g.identity = current_identity()
        return fn(*args, **kwargs)
    return wrapper
