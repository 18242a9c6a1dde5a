import os
from types import SimpleNamespace
from typing import Iterable, Optional, Tuple

import pytest

from shared.schemas import ImagePayload

BOUNDARY = "echo-test-boundary"

# Deterministic binary content that never contains CRLF followed by the boundary
PNG_HEADER = b"\x89PNG\r\n\x1a\n"


def image_bytes(size: int) -> bytes:
    body = bytes(range(256)) * (size // 256 + 1)
    return (PNG_HEADER + body)[:size]


def build_multipart(
    parts: Iterable[Tuple[str, bytes, Optional[str], Optional[str]]],
    boundary: str = BOUNDARY,
) -> Tuple[bytes, str]:
    """
    Build a multipart/form-data body.

    Args:
        parts: (field name, data, filename, content type) tuples.

    Returns:
        (body, Content-Type header value)
    """
    body = bytearray()
    for name, data, filename, content_type in parts:
        body += f"--{boundary}\r\n".encode()
        disposition = f'form-data; name="{name}"'
        if filename:
            disposition += f'; filename="{filename}"'
        body += f"Content-Disposition: {disposition}\r\n".encode()
        if content_type:
            body += f"Content-Type: {content_type}\r\n".encode()
        body += b"\r\n" + data + b"\r\n"
    body += f"--{boundary}--\r\n".encode()
    return bytes(body), f"multipart/form-data; boundary={boundary}"


class FakeDescriber:
    """Stands in for VisionDescriber; records every payload it receives."""

    def __init__(self, answer="A person walking a dog. About 10 to 15 feet away.", error=None):
        self.answer = answer
        self.error = error
        self.calls = []
        self.closed = False

    def describe(self, image: ImagePayload) -> str:
        self.calls.append(image)
        if self.error is not None:
            raise self.error
        return self.answer

    def close(self) -> None:
        self.closed = True


class FakeResponse:
    def __init__(self, status_code=200, text="", content=None, headers=None, json_data=None):
        self.status_code = status_code
        self.text = text
        self.content = content if content is not None else text.encode()
        self.headers = headers or {}
        self._json = json_data

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    def json(self):
        return self._json

    def raise_for_status(self):
        if not self.ok:
            import requests

            raise requests.exceptions.HTTPError(f"{self.status_code} Error")


class FakeSession:
    """Minimal requests.Session replacement recording calls."""

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.posts = []
        self.gets = []

    def post(self, url, **kwargs):
        self.posts.append(SimpleNamespace(url=url, **kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        self.gets.append(SimpleNamespace(url=url, **kwargs))
        if self.error is not None:
            raise self.error
        return self.response


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("ECHO_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
