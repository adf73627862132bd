from functools import wraps
from typing import Callable, Optional

import azure.functions as func

from models import User, UserRole
from utils.cors import cors_response, json_response


def require_role(current_user: Callable[[func.HttpRequest], Optional[User]], minimum: UserRole) -> Callable:
    """
    Decorator that rejects callers below ``minimum`` before the handler runs.
    OPTIONS preflights always pass through.
    """
    def decorator(f: Callable) -> Callable:
        @wraps(f)
        def decorated_function(req: func.HttpRequest) -> func.HttpResponse:
            if req.method == "OPTIONS":
                return f(req)

            user = current_user(req)
            if not user:
                return cors_response("Unauthorized", 401)

            if not user.has_role(minimum):
                return json_response(
                    {"error": f"Forbidden: {minimum.value} access required", "role": user.role.value},
                    403,
                )
            return f(req)

        return decorated_function

    return decorator
