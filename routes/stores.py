import azure.functions as func
import logging, uuid as _uuid
from typing import Optional

from app_context import AppContext
from auth.roles import require_role
from models import UserRole
from services.errors import BadRequest, Conflict, NotFound
from utils.cors import cors_response, json_response
from utils.multipart import parse_multipart

logger = logging.getLogger(__name__)


def _store_id(req: func.HttpRequest) -> _uuid.UUID:
    try:
        return _uuid.UUID(req.route_params["store_id"])
    except (KeyError, ValueError):
        raise BadRequest("Invalid store ID") from None


def _json_body(req: func.HttpRequest) -> dict:
    try:
        body = req.get_json()
    except ValueError:
        raise BadRequest("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise BadRequest("Invalid request body")
    return body


def _super_admin_only(user) -> Optional[func.HttpResponse]:
    if user.has_role(UserRole.SUPER_ADMIN):
        return None
    return json_response({"error": "Forbidden: Super admin access required"}, 403)


def stores_collection(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """
    GET  /stores   every store, by name
    POST /stores   {name, address?, brandLogos?, imageUrl?}   SUPER_ADMIN
    """
    if req.method == "OPTIONS":
        return cors_response("", 204)

    user = ctx.current_user(req)
    if not user:
        return json_response({"error": "Unauthorized"}, 401)

    try:
        if req.method == "GET":
            return json_response(ctx.stores.list_stores())

        denied = _super_admin_only(user)
        if denied:
            return denied
        return json_response(ctx.stores.create_store(_json_body(req)), 201)
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except Conflict as e:
        return json_response({"error": str(e)}, 409)
    except Exception:
        logger.exception("stores %s failed", req.method)
        return json_response({"error": "Internal server error"}, 500)


def store_item(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """
    GET    /stores/{store_id}
    PUT    /stores/{store_id}   {name?, address?, brandLogos?, imageUrl?}   SUPER_ADMIN
    DELETE /stores/{store_id}   SUPER_ADMIN, only once the store has no vehicles
    """
    if req.method == "OPTIONS":
        return cors_response("", 204)

    user = ctx.current_user(req)
    if not user:
        return json_response({"error": "Unauthorized"}, 401)

    try:
        sid = _store_id(req)
        if req.method == "GET":
            store = ctx.stores.get_store(sid)
            if not store:
                return json_response({"error": "Store not found"}, 404)
            return json_response(store)

        denied = _super_admin_only(user)
        if denied:
            return denied
        if req.method == "PUT":
            return json_response(ctx.stores.update_store(sid, _json_body(req)))

        ctx.stores.delete_store(sid)
        logger.info("user=%s deleted store=%s", user.id, sid)
        return json_response({"success": True, "message": "Store deleted successfully"})
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Conflict as e:
        return json_response({"error": str(e)}, 409)
    except Exception:
        logger.exception("store %s failed", req.method)
        return json_response({"error": "Internal server error"}, 500)


def store_backgrounds(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """
    GET    /stores/{store_id}/backgrounds
    POST   /stores/{store_id}/backgrounds              multipart: image, imageType
    DELETE /stores/{store_id}/backgrounds?imageType=X
    """
    if req.method == "OPTIONS":
        return cors_response("", 204)

    try:
        sid = _store_id(req)

        if req.method == "GET":
            store = ctx.stores.get_backgrounds(sid)
            if not store:
                return json_response({"error": "Store not found"}, 404)
            return json_response(store)

        if req.method == "POST":
            form = parse_multipart(req)
            f = form.files.get("image")
            if not f:
                raise BadRequest("No image file provided")
            image_type = form.fields.get("imageType")
            if not image_type:
                raise BadRequest("Image type is required")
            url = ctx.stores.set_background(sid, image_type, f)
            return json_response({"success": True, "imageType": image_type.upper(), "url": url}, 201)

        # DELETE
        image_type = req.params.get("imageType")
        if not image_type:
            raise BadRequest("Image type is required")
        removed = ctx.stores.clear_background(sid, image_type)
        return json_response({"success": True, "removed": removed})
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Exception:
        logger.exception("store backgrounds %s failed", req.method)
        return json_response({"error": "Internal server error"}, 500)


def store_image(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """POST /stores/{store_id}/image  multipart: image"""
    if req.method == "OPTIONS":
        return cors_response("", 204)

    try:
        sid = _store_id(req)
        f = parse_multipart(req).files.get("image")
        if not f:
            raise BadRequest("No image file provided")
        url = ctx.stores.set_store_image(sid, f)
        return json_response({"success": True, "imageUrl": url}, 201)
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Exception:
        logger.exception("store image upload failed")
        return json_response({"error": "Upload failed"}, 500)


def build_blueprint(ctx: AppContext) -> func.Blueprint:
    bp = func.Blueprint()

    @bp.function_name(name="Stores")
    @bp.route(route="stores", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _stores(req: func.HttpRequest) -> func.HttpResponse:
        return stores_collection(ctx, req)

    @bp.function_name(name="StoreItem")
    @bp.route(route="stores/{store_id:guid}", methods=["GET", "PUT", "DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _store_item(req: func.HttpRequest) -> func.HttpResponse:
        return store_item(ctx, req)

    @bp.function_name(name="StoreBackgrounds")
    @bp.route(route="stores/{store_id}/backgrounds", methods=["GET", "POST", "DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    @require_role(ctx.current_user, UserRole.SUPER_ADMIN)
    def _store_backgrounds(req: func.HttpRequest) -> func.HttpResponse:
        return store_backgrounds(ctx, req)

    @bp.function_name(name="StoreImage")
    @bp.route(route="stores/{store_id}/image", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    @require_role(ctx.current_user, UserRole.ADMIN)
    def _store_image(req: func.HttpRequest) -> func.HttpResponse:
        return store_image(ctx, req)

    return bp
