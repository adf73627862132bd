import os, json, logging, traceback
import azure.functions as func

app = func.FunctionApp(http_auth_level=func.AuthLevel.ANONYMOUS)

# Only try dotenv locally (Azure often doesn't set WEBSITE_INSTANCE_ID; use a broader check)
IS_AZURE = bool(os.getenv("WEBSITE_SITE_NAME")) or os.getenv("FUNCTIONS_WORKER_RUNTIME") == "python"
if not IS_AZURE:
    from dotenv import load_dotenv
    load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

REGISTERED: list[str] = []
FAILURES: dict[str, dict] = {}

CONTEXT = None
try:
    from config import Settings
    from app_context import build_context

    CONTEXT = build_context(Settings.from_env())
except Exception as e:
    logger.exception("Service start-up failed")
    FAILURES["context"] = {"error": repr(e), "trace": traceback.format_exc()}


def _try(modpath: str, name: str):
    if CONTEXT is None:
        return
    try:
        mod = __import__(modpath, fromlist=["build_blueprint"])
        app.register_functions(mod.build_blueprint(CONTEXT))
        REGISTERED.append(name)
    except Exception as e:
        FAILURES[name] = {"error": repr(e), "trace": traceback.format_exc()}

# 🔹 Register AT STARTUP so the Functions host discovers HTTP triggers
_try("routes.auth", "auth")
_try("routes.vehicles", "vehicles")
_try("routes.processing", "processing")
_try("routes.stores", "stores")
_try("routes.inventory", "inventory")

@app.function_name(name="Ping")
@app.route(route="ping", methods=["GET"])
def ping(req: func.HttpRequest) -> func.HttpResponse:
    return func.HttpResponse("ok", mimetype="text/plain")

# Diagnostics (read-only)
@app.function_name(name="Diag")
@app.route(route="_diag", methods=["GET"])
def diag(req: func.HttpRequest) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps({"registered": REGISTERED, "failures": FAILURES}),
        mimetype="application/json"
    )
