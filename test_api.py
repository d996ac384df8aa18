"""
End-to-end tests for the HTTP API using FastAPI's TestClient.

The app is built without a touch-up credential, so responses are the
deterministic composites.
"""

import base64
import warnings
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from app.config import Settings
from app.main import create_app
from conftest import png_bytes


@pytest.fixture
def client(offline_settings):
    return TestClient(create_app(offline_settings))


@pytest.fixture
def photo():
    return png_bytes(Image.new("RGB", (300, 200), (0, 0, 255)))


@pytest.fixture
def application_form():
    return png_bytes(Image.new("RGBA", (60, 80), (255, 255, 255, 255)))


@pytest.fixture
def face_mask():
    return png_bytes(Image.new("RGBA", (80, 40), (90, 90, 90, 255)))


def _decode(payload):
    return Image.open(BytesIO(base64.b64decode(payload["image_base64"])))


def test_root_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_v1_health_reports_touchup_disabled(client):
    response = client.get("/api/v1/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "api_version": "v1", "touchup_enabled": False}


def test_v1_health_reports_touchup_enabled():
    client = TestClient(create_app(Settings(openai_api_key="sk-test")))

    assert client.get("/api/v1/health").json()["touchup_enabled"] is True


@pytest.mark.parametrize("mode", ["hold", "wear"])
def test_generate_returns_photo_sized_png(client, photo, application_form, mode):
    response = client.post(
        "/api/v1/generate",
        files={
            "user_image": ("me.png", photo, "image/png"),
            "template_image": ("copy.png", application_form, "image/png"),
        },
        data={"mode": mode},
    )

    assert response.status_code == 200
    payload = response.json()
    image = _decode(payload)
    assert payload["mime_type"] == "image/png"
    assert image.format == "PNG"
    assert image.size == (300, 200) == (payload["width"], payload["height"])


def test_generate_places_hold_template_lower_right(client, photo, application_form):
    response = client.post(
        "/api/v1/generate",
        files={
            "user_image": ("me.png", photo, "image/png"),
            "template_image": ("copy.png", application_form, "image/png"),
        },
    )

    image = _decode(response.json()).convert("RGBA")
    # hold: left = 180, top = 80, width = 45
    assert image.getpixel((190, 90)) == (255, 255, 255, 255)
    assert image.getpixel((10, 10)) == (0, 0, 255, 255)


def test_generate_dual_stitches_two_panels(client, photo, application_form, face_mask):
    response = client.post(
        "/api/v1/generate-dual",
        files={
            "user_image": ("me.png", photo, "image/png"),
            "left_template": ("copy.png", application_form, "image/png"),
            "right_template": ("mask.png", face_mask, "image/png"),
        },
        data={"prompt_left": "hold it", "prompt_right": "wear it"},
    )

    assert response.status_code == 200
    image = _decode(response.json())
    assert image.size == (2 * 300 + 20, 200)


def test_generate_rejects_unreadable_image(client, application_form):
    response = client.post(
        "/api/v1/generate",
        files={
            "user_image": ("me.png", b"not an image", "image/png"),
            "template_image": ("copy.png", application_form, "image/png"),
        },
    )

    assert response.status_code == 422
    assert "user_image" in response.json()["detail"]


def test_generate_rejects_unknown_mode(client, photo, application_form):
    response = client.post(
        "/api/v1/generate",
        files={
            "user_image": ("me.png", photo, "image/png"),
            "template_image": ("copy.png", application_form, "image/png"),
        },
        data={"mode": "juggle"},
    )

    assert response.status_code == 422


def test_generate_requires_template(client, photo):
    response = client.post("/api/v1/generate", files={"user_image": ("me.png", photo, "image/png")})

    assert response.status_code == 422


def test_oversized_upload_is_rejected(photo, application_form):
    client = TestClient(create_app(Settings(max_upload_bytes=64)))

    response = client.post(
        "/api/v1/generate",
        files={
            "user_image": ("me.png", photo, "image/png"),
            "template_image": ("copy.png", application_form, "image/png"),
        },
    )

    assert response.status_code == 413


@pytest.mark.parametrize(
    ("max_upload_bytes", "user_image", "expected"),
    [(64, None, 413), (10 * 1024 * 1024, b"not an image", 422)],
    ids=["too-large", "unreadable"],
)
def test_error_responses_do_not_emit_status_deprecations(photo, application_form, max_upload_bytes, user_image, expected):
    client = TestClient(create_app(Settings(max_upload_bytes=max_upload_bytes)))

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        response = client.post(
            "/api/v1/generate",
            files={
                "user_image": ("me.png", user_image or photo, "image/png"),
                "template_image": ("copy.png", application_form, "image/png"),
            },
        )

    assert response.status_code == expected
    assert not [w for w in caught if "HTTP_4" in str(w.message)]
