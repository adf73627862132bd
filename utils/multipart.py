# utils/multipart.py
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from requests_toolbelt.multipart import decoder as mp

from services.errors import BadRequest
from services.vehicle_image_service import UploadedFile

_NAME = re.compile(r'\bname="([^"]*)"')
_FILENAME = re.compile(r'\bfilename="([^"]*)"')


@dataclass
class FormPart:
    name: str
    filename: Optional[str]
    content_type: str
    data: bytes


@dataclass
class MultipartForm:
    fields: Dict[str, str] = field(default_factory=dict)
    files: Dict[str, UploadedFile] = field(default_factory=dict)

    def indexed_files(self, prefix: str = "file_", type_prefix: str = "imageType_") -> List[UploadedFile]:
        """
        ``file_0, file_1, ...`` in index order, each picking up an optional
        ``imageType_{i}`` field. A lone ``file`` field is accepted too.
        """
        indexed = []
        for name, f in self.files.items():
            if name.startswith(prefix) and name[len(prefix):].isdigit():
                index = name[len(prefix):]
                f.image_type = self.fields.get(f"{type_prefix}{index}") or None
                indexed.append((int(index), f))
        if not indexed and "file" in self.files:
            f = self.files["file"]
            f.image_type = self.fields.get("imageType") or None
            return [f]
        return [f for _, f in sorted(indexed, key=lambda pair: pair[0])]


def parse_multipart(req) -> MultipartForm:
    """
    Parse multipart/form-data from an Azure Functions HttpRequest into text
    fields and file parts.
    """
    ctype = req.headers.get("content-type") or req.headers.get("Content-Type")
    if not ctype or "multipart/form-data" not in ctype:
        raise BadRequest("Expected multipart/form-data")

    body = req.get_body()
    try:
        parts = mp.MultipartDecoder(body, ctype).parts
    except (mp.ImproperBodyPartContentException, mp.NonMultipartContentTypeException) as e:
        raise BadRequest(f"Malformed multipart body: {e}") from None
    if not parts:
        raise BadRequest("No multipart parts found")

    form = MultipartForm()
    for p in parts:
        disp = p.headers.get(b"Content-Disposition", b"").decode("utf-8", "ignore")
        name_match = _NAME.search(disp)
        if not name_match:
            continue
        name = name_match.group(1)
        filename_match = _FILENAME.search(disp)
        if filename_match:
            content_type = p.headers.get(b"Content-Type", b"application/octet-stream").decode("utf-8", "ignore")
            form.files[name] = UploadedFile(
                filename=filename_match.group(1) or "upload.bin",
                content_type=content_type.lower(),
                data=p.content,
            )
        else:
            form.fields[name] = p.text
    return form
