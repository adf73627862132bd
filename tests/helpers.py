import base64
import io
import json
from typing import Optional
from unittest.mock import MagicMock

import azure.functions as func
from PIL import Image

from auth.token import create_access_token

BLOB_BASE = "https://blob.test/vehicle-images"
JWT_SECRET = "test-secret"


def png_bytes(size=(64, 48), color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def fake_response(content: bytes = b"", payload=None, status: int = 200):
    r = MagicMock()
    r.ok = 200 <= status < 300
    r.status_code = status
    r.reason = "OK" if r.ok else "Error"
    r.content = content
    r.text = json.dumps(payload) if payload is not None else ""
    r.json.return_value = payload
    return r


def processed_payload(data: bytes = b"processed-bytes") -> dict:
    return {"processedImage": base64.b64encode(data).decode("ascii")}


def make_request(
    method: str,
    route: str,
    route_params: Optional[dict] = None,
    body: bytes = b"",
    headers: Optional[dict] = None,
    params: Optional[dict] = None,
    json_body=None,
) -> func.HttpRequest:
    headers = dict(headers or {})
    if json_body is not None:
        body = json.dumps(json_body).encode()
        headers.setdefault("Content-Type", "application/json")
    return func.HttpRequest(
        method=method,
        url=f"http://localhost/api/{route}",
        headers=headers,
        params=params or {},
        route_params=route_params or {},
        body=body,
    )


def read_json(resp: func.HttpResponse):
    return json.loads(resp.get_body())


def bearer(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token({'sub': str(user.id)}, JWT_SECRET)}"}
