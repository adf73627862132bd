import pytest
from requests_toolbelt import MultipartEncoder

from services.errors import BadRequest
from utils.multipart import parse_multipart

from helpers import make_request


def _request(fields):
    enc = MultipartEncoder(fields=fields)
    return make_request("POST", "upload", body=enc.to_string(), headers={"Content-Type": enc.content_type})


def test_indexed_files_are_ordered_with_types():
    form = parse_multipart(_request({
        "file_1": ("b.jpg", b"bbb", "image/jpeg"),
        "file_0": ("a.png", b"aaa", "image/PNG"),
        "imageType_1": "FRONT",
    }))
    files = form.indexed_files()
    assert [f.filename for f in files] == ["a.png", "b.jpg"]
    assert [f.image_type for f in files] == [None, "FRONT"]
    assert files[0].content_type == "image/png"
    assert files[0].data == b"aaa"


def test_single_file_field():
    form = parse_multipart(_request({"file": ("a.jpg", b"aaa", "image/jpeg"), "imageType": "BACK"}))
    files = form.indexed_files()
    assert len(files) == 1 and files[0].image_type == "BACK"


def test_non_multipart_is_rejected():
    with pytest.raises(BadRequest):
        parse_multipart(make_request("POST", "upload", json_body={"a": 1}))
