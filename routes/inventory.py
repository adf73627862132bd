import azure.functions as func
import logging
from datetime import datetime, timezone

from app_context import AppContext
from services.inventory_feed_service import FEED_FILENAME, FeedAuthError, check_feed_key
from utils.cors import CORS_HEADERS, cors_response, json_response

logger = logging.getLogger(__name__)


def _error(message: str, status: int, code: str) -> func.HttpResponse:
    return json_response(
        {"error": message, "code": code, "timestamp": datetime.now(timezone.utc).isoformat()},
        status,
    )


def inventory_feed(ctx: AppContext, req: func.HttpRequest) -> func.HttpResponse:
    """
    GET /inventory/feed.csv?key=API_KEY

    Authenticated by the feed key rather than a user token; the feed is
    pulled by external inventory systems.
    """
    if req.method == "OPTIONS":
        return cors_response("", 204)

    try:
        check_feed_key(req.params.get("key"), ctx.settings.feed_api_key)
    except FeedAuthError as e:
        return _error(str(e), e.status, e.code)

    try:
        body = ctx.feed.generate_feed()
    except Exception:
        logger.exception("Inventory feed generation failed")
        return _error("Failed to generate inventory feed", 500, "FEED_GENERATION_ERROR")

    return func.HttpResponse(
        body=body,
        status_code=200,
        mimetype="text/csv",
        charset="utf-8",
        headers={
            **CORS_HEADERS,
            "Content-Disposition": f'attachment; filename="{FEED_FILENAME}"',
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "Pragma": "no-cache",
            "Expires": "0",
        },
    )


def build_blueprint(ctx: AppContext) -> func.Blueprint:
    bp = func.Blueprint()

    @bp.function_name(name="InventoryFeed")
    @bp.route(route="inventory/feed.csv", methods=["GET", "OPTIONS"], auth_level=func.AuthLevel.ANONYMOUS)
    def _inventory_feed(req: func.HttpRequest) -> func.HttpResponse:
        return inventory_feed(ctx, req)

    return bp
