# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service
from .permissions import validate_operation_code
from .services.access_policy import is_allowed


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1]


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user') and hasattr(g, 'caller')


def require_auth(f):
    """
    Require a valid session token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.caller: CallerContext (user id, role, branch id) passed to services
    - g.session_context: The full SessionContext object

    Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.caller = context.caller
        g.session_context = context

        return f(*args, **kwargs)

    return decorated_function


def require_operation(operation_code: str):
    """
    Require the caller's role to be allowed to run an operation.

    Consults the same policy table as the services, so a route that passes
    here still gets the service's own ownership checks. Unknown codes fail at
    import time rather than denying every request.
    """
    if not validate_operation_code(operation_code):
        raise ValueError(f"Unknown operation code: {operation_code}")

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            if not is_allowed(g.caller.role, operation_code):
                return jsonify({
                    "error": "Permission denied",
                    "operation": operation_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
