import azure.functions as func
import logging, uuid as _uuid

from app_context import AppContext
from auth.roles import require_role
from models import ImageType, UserRole
from services.errors import BadRequest, NotFound, InvalidImageType
from services.image_processor_service import ProcessingError
from services.image_categorization import coerce_image_type
from utils.cors import CORS_HEADERS, cors_response, json_response

logger = logging.getLogger(__name__)


def process_image(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """
    POST /images/process  {vehicleImageId, imageType}

    Runs AI background replacement on one image. Gallery images come back
    with ``skipped: true``. A failed run returns 500 with the error and
    leaves the image untouched.
    """
    if req.method == "OPTIONS":
        return cors_response("", 204)

    if not ctx.current_user(req):
        return json_response({"error": "Unauthorized"}, 401)

    try:
        body = req.get_json()
    except ValueError:
        return json_response({"error": "Invalid JSON body"}, 400)
    if not isinstance(body, dict):
        return json_response({"error": "Invalid request body"}, 400)

    if not body.get("vehicleImageId"):
        return json_response({"error": "vehicleImageId is required"}, 400)
    if not body.get("imageType"):
        return json_response({"error": "imageType is required"}, 400)

    try:
        image_id = _uuid.UUID(str(body["vehicleImageId"]))
    except ValueError:
        return json_response({"error": "Invalid vehicleImageId"}, 400)
    try:
        image_type = coerce_image_type(body["imageType"])
    except InvalidImageType:
        return json_response(
            {"error": "Invalid imageType", "validTypes": [t.value for t in ImageType]}, 400
        )

    try:
        image = ctx.images.find_vehicle_image(image_id)
        if not image:
            return json_response({"error": "Vehicle image not found"}, 404)
        if image.image_type != image_type:
            return json_response(
                {"error": "imageType mismatch", "expected": image.image_type.value, "provided": image_type.value},
                400,
            )

        result = ctx.processor.process_image(image_id, image.original_url, image_type)
    except Exception:
        logger.exception("Image processing API error")
        return json_response(
            {"error": "Internal server error", "message": "An unexpected error occurred during image processing"},
            500,
        )

    if result.success:
        return json_response(result.to_dict())
    return json_response({"success": False, "error": result.error or "Image processing failed"}, 500)


def process_vehicle(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """POST /processing  {vehicleId, imageIds}: process a vehicle's selected key images."""
    if req.method == "OPTIONS":
        return cors_response("", 204)

    if not ctx.current_user(req):
        return json_response({"error": "Unauthorized"}, 401)

    try:
        body = req.get_json()
        vehicle_id = _uuid.UUID(str(body.get("vehicleId")))
        image_ids = body.get("imageIds")
        if not isinstance(image_ids, list) or not image_ids:
            raise BadRequest("Vehicle ID and image IDs are required")
        image_ids = [_uuid.UUID(str(i)) for i in image_ids]
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except (ValueError, AttributeError):
        return json_response({"error": "Vehicle ID and image IDs are required"}, 400)

    try:
        summary = ctx.processor.process_vehicle(vehicle_id, image_ids)
        summary["vehicle"] = ctx.vehicles.get_vehicle(vehicle_id)
        return json_response(summary)
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Exception:
        logger.exception("Processing error for vehicle %s", vehicle_id)
        return json_response({"error": "Internal server error"}, 500)


def _vehicle_and_images(req: func.HttpRequest):
    try:
        body = req.get_json()
        vehicle_id = _uuid.UUID(str(body.get("vehicleId")))
        image_ids = body.get("imageIds")
        if not isinstance(image_ids, list) or not image_ids:
            raise ValueError
        return vehicle_id, [_uuid.UUID(str(i)) for i in image_ids]
    except (ValueError, AttributeError):
        raise BadRequest("Vehicle ID and image IDs are required") from None


def reprocess_vehicle(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """POST /processing/reprocess  {vehicleId, imageIds}: run processed key images again."""
    if req.method == "OPTIONS":
        return cors_response("", 204)

    try:
        vehicle_id, image_ids = _vehicle_and_images(req)
        summary = ctx.processor.reprocess_vehicle(vehicle_id, image_ids)
        summary["vehicle"] = ctx.vehicles.get_vehicle(vehicle_id)
        return json_response(summary)
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except Exception:
        logger.exception("Reprocessing error")
        return json_response({"error": "Internal server error"}, 500)


def download_processed(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """
    GET  /processing/download?imageId=X   the processed JPEG as an attachment
    POST /processing/download  {imageIds}  download links for several images
    """
    if req.method == "OPTIONS":
        return cors_response("", 204)

    if not ctx.current_user(req):
        return json_response({"error": "Unauthorized"}, 401)

    try:
        if req.method == "POST":
            try:
                ids = [_uuid.UUID(str(i)) for i in (req.get_json() or {}).get("imageIds") or []]
            except (ValueError, AttributeError):
                raise BadRequest("Image IDs are required") from None
            images = ctx.processor.download_manifest(ids)
            return json_response({"success": True, "images": images, "totalCount": len(images)})

        raw_id = req.params.get("imageId")
        if not raw_id:
            raise BadRequest("Image ID is required")
        try:
            image_id = _uuid.UUID(raw_id)
        except ValueError:
            raise BadRequest("Invalid image ID") from None
        data, filename = ctx.processor.download_processed(image_id)
    except BadRequest as e:
        return json_response({"error": str(e)}, 400)
    except NotFound as e:
        return json_response({"error": str(e)}, 404)
    except ProcessingError:
        logger.exception("Processed image fetch failed")
        return json_response({"error": "Failed to download image"}, 500)
    except Exception:
        logger.exception("Download error")
        return json_response({"error": "Internal server error"}, 500)

    return func.HttpResponse(
        body=data,
        status_code=200,
        mimetype="image/jpeg",
        headers={
            **CORS_HEADERS,
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Content-Length": str(len(data)),
        },
    )


def build_blueprint(ctx: AppContext) -> func.Blueprint:
    bp = func.Blueprint()

    @bp.function_name(name="ProcessImage")
    @bp.route(route="images/process", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _process_image(req: func.HttpRequest) -> func.HttpResponse:
        return process_image(ctx, req)

    @bp.function_name(name="ProcessVehicle")
    @bp.route(route="processing", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _process_vehicle(req: func.HttpRequest) -> func.HttpResponse:
        return process_vehicle(ctx, req)

    @bp.function_name(name="ReprocessVehicle")
    @bp.route(route="processing/reprocess", methods=["POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    @require_role(ctx.current_user, UserRole.ADMIN)
    def _reprocess_vehicle(req: func.HttpRequest) -> func.HttpResponse:
        return reprocess_vehicle(ctx, req)

    @bp.function_name(name="DownloadProcessed")
    @bp.route(route="processing/download", methods=["GET", "POST", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _download_processed(req: func.HttpRequest) -> func.HttpResponse:
        return download_processed(ctx, req)

    return bp
