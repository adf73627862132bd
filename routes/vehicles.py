import azure.functions as func
import logging, uuid as _uuid

from app_context import AppContext
from auth.roles import require_role
from models import UserRole
from services.errors import BadRequest, Conflict, NotFound
from utils.cors import cors_response, json_response
from utils.multipart import parse_multipart

logger = logging.getLogger(__name__)


def _route_uuid(req: func.HttpRequest, name: str) -> _uuid.UUID:
    try:
        return _uuid.UUID(req.route_params[name])
    except (KeyError, ValueError):
        raise BadRequest(f"Invalid {name.replace('_', ' ')}") from None


def _json_body(req: func.HttpRequest) -> dict:
    try:
        body = req.get_json()
    except ValueError:
        raise BadRequest("Invalid JSON body") from None
    if not isinstance(body, dict):
        raise BadRequest("Invalid request body")
    return body


# ─────────────────────────────────────────────────────────────────────────────
#   GET  /vehicles?storeId=&page=&limit=&search=&sortBy=&sortOrder=
#   POST /vehicles   {storeId, stockNumber, vin}
# ─────────────────────────────────────────────────────────────────────────────
def vehicles_collection(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return cors_response("", 204)

    if not ctx.current_user(req):
        return json_response({"error": "Unauthorized"}, 401)

    try:
        if req.method == "GET":
            store_id = req.params.get("storeId")
            if not store_id:
                raise BadRequest("Store ID is required")
            try:
                store_id = _uuid.UUID(store_id)
            except ValueError:
                raise BadRequest("Invalid store ID") from None
            page = ctx.vehicles.list_vehicles(
                store_id,
                page=req.params.get("page"),
                limit=req.params.get("limit"),
                search=req.params.get("search"),
                sort_by=req.params.get("sortBy"),
                sort_order=req.params.get("sortOrder"),
            )
            return json_response(page)

        vehicle = ctx.vehicles.create_vehicle(_json_body(req))
        return json_response(vehicle, 201)
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Conflict as e:
        return json_response({"error": str(e)}, 409)
    except Exception:
        logger.exception("vehicles %s failed", req.method)
        return json_response({"error": "Internal server error"}, 500)


# ─────────────────────────────────────────────────────────────────────────────
#   GET    /vehicles/{vehicle_id}
#   PUT    /vehicles/{vehicle_id}   {stockNumber?, vin?, processingStatus?}
#   DELETE /vehicles/{vehicle_id}   ADMIN+
# ─────────────────────────────────────────────────────────────────────────────
def vehicle_item(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return cors_response("", 204)

    user = ctx.current_user(req)
    if not user:
        return cors_response("Unauthorized", 401)

    try:
        vid = _route_uuid(req, "vehicle_id")

        if req.method == "PUT":
            return json_response(ctx.vehicles.update_vehicle(vid, _json_body(req)))

        if req.method == "DELETE":
            if not user.has_role(UserRole.ADMIN):
                return json_response({"error": "Forbidden: Only administrators can delete vehicles"}, 403)
            if not ctx.vehicles.delete_vehicle(vid):
                return json_response({"error": "Vehicle not found"}, 404)
            logger.info("user=%s deleted vehicle=%s", user.id, vid)
            return json_response({"message": "Vehicle deleted successfully"})

        v = ctx.vehicles.get_vehicle(vid)
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Conflict as e:
        return json_response({"error": str(e)}, 409)
    except Exception:
        logger.exception("vehicle %s failed", req.method)
        return cors_response("Lookup failed", 500)

    if not v:
        return cors_response("Not found", 404)
    return json_response(v)


# ─────────────────────────────────────────────────────────────────────────────
#   DELETE /vehicles/bulk-delete   {vehicleIds: [...]}   ADMIN+
# ─────────────────────────────────────────────────────────────────────────────
def bulk_delete_vehicles(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return cors_response("", 204)

    try:
        count = ctx.vehicles.bulk_delete(_json_body(req).get("vehicleIds"))
        return json_response({"message": f"Successfully deleted {count} vehicles", "deletedCount": count})
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except Exception:
        logger.exception("bulk vehicle delete failed")
        return json_response({"error": "Internal server error"}, 500)


# ─────────────────────────────────────────────────────────────────────────────
#   GET  /vehicles/{vehicle_id}/images
#   POST /vehicles/{vehicle_id}/images   multipart: file_{i}, imageType_{i}
# ─────────────────────────────────────────────────────────────────────────────
def vehicle_images(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return cors_response("", 204)

    if not ctx.current_user(req):
        return cors_response("Unauthorized", 401)

    try:
        vid = _route_uuid(req, "vehicle_id")
        if req.method == "GET":
            return json_response({"images": ctx.images.list_images(vid)})

        files = parse_multipart(req).indexed_files()
        records = ctx.images.upload_images(vid, files)
        return json_response(
            {"message": "Images uploaded successfully", "images": records, "uploadCount": len(records)},
            201,
        )
    except BadRequest as e:
        return cors_response(str(e), 400)
    except NotFound as e:
        return cors_response(str(e), 404)
    except Exception:
        logger.exception("vehicle images %s failed", req.method)
        return cors_response("Internal server error", 500)


# ─────────────────────────────────────────────────────────────────────────────
#   PATCH /vehicles/{vehicle_id}/images/reorder   {imageUpdates: [{id, sortOrder}]}
# ─────────────────────────────────────────────────────────────────────────────
def reorder_images(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return cors_response("", 204)

    if not ctx.current_user(req):
        return cors_response("Unauthorized", 401)

    try:
        vid = _route_uuid(req, "vehicle_id")
        body = _json_body(req)
        images = ctx.images.reorder_images(vid, body.get("imageUpdates"))
        return json_response({"success": True, "images": images})
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Exception:
        logger.exception("Error reordering images")
        return json_response({"error": "Internal server error"}, 500)


# ─────────────────────────────────────────────────────────────────────────────
#   PATCH  /vehicles/{vehicle_id}/images/{image_id}   {imageType}
#   DELETE /vehicles/{vehicle_id}/images/{image_id}
# ─────────────────────────────────────────────────────────────────────────────
def vehicle_image_item(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    if req.method == "OPTIONS":
        return cors_response("", 204)

    user = ctx.current_user(req)
    if not user:
        return cors_response("Unauthorized", 401)

    try:
        vid = _route_uuid(req, "vehicle_id")
        iid = _route_uuid(req, "image_id")

        if req.method == "PATCH":
            body = _json_body(req)
            if "imageType" not in body:
                raise BadRequest("imageType is required")
            image = ctx.images.update_image_type(vid, iid, body["imageType"])
            return json_response({"success": True, "image": image})

        # DELETE
        if not ctx.images.delete_image(vid, iid):
            return json_response({"error": "Image not found"}, 404)
        logger.info("user=%s deleted image=%s vehicle=%s", user.id, iid, vid)
        return json_response({"success": True})
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Exception:
        logger.exception("vehicle_image_item %s failed", req.method)
        return json_response({"error": "Internal server error"}, 500)


def build_blueprint(ctx: AppContext) -> func.Blueprint:
    bp = func.Blueprint()

    @bp.function_name(name="Vehicles")
    @bp.route(route="vehicles", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _vehicles(req: func.HttpRequest) -> func.HttpResponse:
        return vehicles_collection(ctx, req)

    @bp.function_name(name="VehiclesBulkDelete")
    @bp.route(route="vehicles/bulk-delete", methods=["DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    @require_role(ctx.current_user, UserRole.ADMIN)
    def _bulk_delete(req: func.HttpRequest) -> func.HttpResponse:
        return bulk_delete_vehicles(ctx, req)

    # guid constraint keeps "bulk-delete" from matching here
    @bp.function_name(name="VehicleItem")
    @bp.route(route="vehicles/{vehicle_id:guid}", methods=["GET", "PUT", "DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _vehicle_item(req: func.HttpRequest) -> func.HttpResponse:
        return vehicle_item(ctx, req)

    @bp.function_name(name="VehicleImages")
    @bp.route(route="vehicles/{vehicle_id}/images", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _vehicle_images(req: func.HttpRequest) -> func.HttpResponse:
        return vehicle_images(ctx, req)

    # registered before the {image_id} route so "reorder" is not read as an id
    @bp.function_name(name="VehicleImagesReorder")
    @bp.route(route="vehicles/{vehicle_id}/images/reorder", methods=["PATCH", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _reorder_images(req: func.HttpRequest) -> func.HttpResponse:
        return reorder_images(ctx, req)

    @bp.function_name(name="VehicleImageItem")
    @bp.route(route="vehicles/{vehicle_id}/images/{image_id:guid}", methods=["PATCH", "DELETE", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _vehicle_image_item(req: func.HttpRequest) -> func.HttpResponse:
        return vehicle_image_item(ctx, req)

    return bp
