import azure.functions as func
import logging

from app_context import AppContext
from auth.token import create_access_token
from auth.utils import verify_password
from models import User
from utils.cors import cors_response, json_response

logger = logging.getLogger(__name__)


def login(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """
    Authenticate user with email and password.

    Args:
        req: HTTP request containing JSON with email and password

    Returns:
        HTTP response with a bearer access token and the user's profile

    Raises:
        400: Missing email or password
        401: Invalid credentials
        500: Server error
    """
    if req.method == "OPTIONS":
        return cors_response("", 204)

    try:
        data     = req.get_json()
        email    = (data.get("email") or "").strip().lower()
        password = (data.get("password") or "").strip()
    except (ValueError, AttributeError):
        return cors_response("Missing email or password", 400)
    if not all([email, password]):
        return cors_response("Missing email or password", 400)

    try:
        with ctx.session_factory() as db:
            user = db.query(User).filter(User.email == email).first()

        if not user or not verify_password(password, user.password_hash):
            return cors_response("Invalid credentials", 401)

        token = create_access_token({"sub": str(user.id)}, ctx.settings.jwt_secret)
        return json_response({
            "success": True,
            "access_token": token,
            "token_type": "bearer",
            "user": {
                "id": str(user.id),
                "email": user.email,
                "name": user.name,
                "role": user.role.value,
                "is_admin": user.is_admin,
            },
        })
    except Exception:
        logger.exception("Login failed")
        return cors_response("Login failed", 500)


def logout(req: func.HttpRequest) -> func.HttpResponse:
    """Tokens are stateless; the client simply drops its token."""
    if req.method == "OPTIONS":
        return cors_response("", 204)
    return cors_response("Logged out", 200)


def build_blueprint(ctx: AppContext) -> func.Blueprint:
    bp = func.Blueprint()

    @bp.function_name(name="Login")
    @bp.route(route="login", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _login(req: func.HttpRequest) -> func.HttpResponse:
        return login(ctx, req)

    @bp.function_name(name="Logout")
    @bp.route(route="logout", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _logout(req: func.HttpRequest) -> func.HttpResponse:
        return logout(req)

    return bp
