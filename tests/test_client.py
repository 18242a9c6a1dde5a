import pytest
import requests

from edge.client import DescribeClient
from shared.errors import CaptureError, NetworkError, UpstreamError
from tests.conftest import FakeResponse, FakeSession, image_bytes

ENDPOINT = "http://127.0.0.1:8000/describe"


@pytest.fixture
def png_file(tmp_path):
    path = tmp_path / "scene.png"
    path.write_bytes(image_bytes(2048))
    return path


def test_upload_posts_image_field_and_returns_body_verbatim(png_file):
    session = FakeSession(FakeResponse(200, text="A bench. About 4 feet away.\n"))
    client = DescribeClient(ENDPOINT, timeout=12.0, session=session)

    text = client.upload(str(png_file))

    assert text == "A bench. About 4 feet away.\n"
    (call,) = session.posts
    assert call.url == ENDPOINT
    assert call.timeout == 12.0
    assert call.files == {"image": ("scene.png", png_file.read_bytes(), "image/png")}


def test_upload_accepts_file_uri(png_file):
    session = FakeSession(FakeResponse(200, text="ok"))

    DescribeClient(ENDPOINT, session=session).upload(png_file.as_uri())

    assert session.posts[0].files["image"][1] == png_file.read_bytes()


def test_unknown_extension_defaults_to_jpeg(tmp_path):
    path = tmp_path / "capture"
    path.write_bytes(b"\xff\xd8\xff\xe0data")

    payload = DescribeClient(ENDPOINT, session=FakeSession()).load_image(str(path))

    assert payload.mime_type == "image/jpeg"
    assert payload.filename == "capture"


def test_http_uri_is_fetched():
    session = FakeSession(FakeResponse(200, content=b"jpegbytes", headers={"Content-Type": "image/jpeg"}))

    payload = DescribeClient(ENDPOINT, session=session).load_image("http://device.local/photo.jpg")

    assert payload.data == b"jpegbytes"
    assert payload.mime_type == "image/jpeg"
    assert payload.filename == "photo.jpg"


def test_non_success_status_carries_code_and_body(png_file):
    body = 'Bad Request: No image uploaded. Please include an "image" field in the form data.'
    session = FakeSession(FakeResponse(400, text=body))

    with pytest.raises(UpstreamError) as excinfo:
        DescribeClient(ENDPOINT, session=session).upload(str(png_file))

    assert excinfo.value.status_code == 400
    assert excinfo.value.body == body
    assert str(excinfo.value) == f"Request failed (400): {body}"
    assert len(session.posts) == 1


def test_transport_failure_is_network_error_without_retry(png_file):
    session = FakeSession(error=requests.exceptions.ConnectionError("refused"))

    with pytest.raises(NetworkError):
        DescribeClient(ENDPOINT, session=session).upload(str(png_file))

    assert len(session.posts) == 1


def test_missing_file_is_capture_error(tmp_path):
    session = FakeSession()

    with pytest.raises(CaptureError):
        DescribeClient(ENDPOINT, session=session).upload(str(tmp_path / "missing.png"))

    assert session.posts == []


def test_wait_for_server_polls_health():
    session = FakeSession(FakeResponse(200, json_data={"status": "ok", "vision_configured": True}))

    assert DescribeClient(ENDPOINT, session=session).wait_for_server(timeout=1, poll_interval=0)
    assert session.gets[0].url == "http://127.0.0.1:8000/health"
