import os

import pytest
import requests

from gocart import create_app
from gocart import media as media_module
from gocart.media import (
    LOGO_TRANSFORMATION,
    ImageKitUploader,
    LocalMediaStorage,
    MediaUploadError,
    allowed_image_extension,
    build_media_uploader,
    build_transformation_string,
)


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


def test_build_transformation_string():
    assert build_transformation_string(LOGO_TRANSFORMATION) == "q-auto:f-webp:w-512"
    assert build_transformation_string([{"width": 300, "height": 200}]) == "w-300,h-200"
    assert build_transformation_string(None) == ""


def test_allowed_image_extension():
    allowed = {"png", "jpg"}
    assert allowed_image_extension("photo.PNG", allowed)
    assert not allowed_image_extension("photo", allowed)
    assert not allowed_image_extension("photo.gif", allowed)


def test_imagekit_upload_returns_file_path(monkeypatch):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(200, {"filePath": "/logos/logo_abc.png"})

    monkeypatch.setattr(media_module.requests, "post", fake_post)
    uploader = ImageKitUploader("private", "https://ik.imagekit.io/demo/", timeout=5)

    path = uploader.upload(b"bytes", "my logo.png", "logos")

    assert path == "/logos/logo_abc.png"
    url, kwargs = calls[0]
    assert url == "https://upload.imagekit.io/api/v1/files/upload"
    assert kwargs["auth"] == ("private", "")
    assert kwargs["data"]["folder"] == "logos"
    assert kwargs["data"]["fileName"] == "my_logo.png"
    assert kwargs["timeout"] == 5


def test_imagekit_upload_failure_raises(monkeypatch):
    monkeypatch.setattr(
        media_module.requests, "post", lambda url, **kwargs: FakeResponse(401, text="bad key")
    )
    uploader = ImageKitUploader("private", "https://ik.imagekit.io/demo")

    with pytest.raises(MediaUploadError):
        uploader.upload(b"bytes", "logo.png", "logos")


def test_imagekit_network_error_raises(monkeypatch):
    def broken(url, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(media_module.requests, "post", broken)
    uploader = ImageKitUploader("private", "https://ik.imagekit.io/demo")

    with pytest.raises(MediaUploadError):
        uploader.upload(b"bytes", "logo.png", "logos")


def test_imagekit_url_places_transformation_in_path():
    uploader = ImageKitUploader("private", "https://ik.imagekit.io/demo/")

    assert (
        uploader.url("/logos/logo.png", LOGO_TRANSFORMATION)
        == "https://ik.imagekit.io/demo/tr:q-auto:f-webp:w-512/logos/logo.png"
    )
    assert uploader.url("logos/logo.png") == "https://ik.imagekit.io/demo/logos/logo.png"


def test_local_storage_writes_file(tmp_path):
    storage = LocalMediaStorage(str(tmp_path), base_url="https://shop.test")

    path = storage.upload(b"image-bytes", "Logo.PNG", "logos")

    assert path.startswith("/logos/") and path.endswith(".png")
    with open(os.path.join(str(tmp_path), path.lstrip("/")), "rb") as handle:
        assert handle.read() == b"image-bytes"
    assert storage.url(path, LOGO_TRANSFORMATION) == f"https://shop.test/uploads{path}"


def test_build_media_uploader_prefers_imagekit(tmp_path):
    config = {
        "IMAGEKIT_PRIVATE_KEY": "private",
        "IMAGEKIT_URL_ENDPOINT": "https://ik.imagekit.io/demo",
        "IMAGEKIT_UPLOAD_URL": "https://upload.imagekit.io/api/v1/files/upload",
        "COLLABORATOR_TIMEOUT_SECONDS": 10,
        "UPLOAD_FOLDER": str(tmp_path),
    }
    assert isinstance(build_media_uploader(config), ImageKitUploader)

    config["IMAGEKIT_PRIVATE_KEY"] = ""
    assert isinstance(build_media_uploader(config), LocalMediaStorage)


def test_local_uploads_are_served(test_config, db, scheduler, tmp_path):
    storage = LocalMediaStorage(str(tmp_path / "media"))
    app = create_app(test_config, db=db, media=storage, scheduler=scheduler)
    path = storage.upload(b"served", "pic.png", "products")

    response = app.test_client().get(f"/uploads{path}")

    assert response.status_code == 200
    assert response.data == b"served"
