import asyncio

import pytest

from server.ingest import MAX_HEADER_BYTES, MAX_HEADERS_PER_PART, MultipartIngest
from shared.errors import MultipartError, PayloadTooLargeError, RequestFormatError
from tests.conftest import BOUNDARY, build_multipart, image_bytes


class CountingStream:
    """Async byte source that records how many chunks were pulled."""

    def __init__(self, data: bytes, chunk_size: int = 64):
        self._chunks = [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]
        self.total = len(self._chunks)
        self.pulled = 0

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for chunk in self._chunks:
            self.pulled += 1
            yield chunk


def parse_stream(ingest, headers, stream):
    return asyncio.run(ingest.parse_stream(headers, stream))


def test_single_image_field_is_byte_identical():
    data = image_bytes(5000)
    body, content_type = build_multipart([("image", data, "scene.png", "image/png")])

    payload = MultipartIngest().parse_bytes({"Content-Type": content_type}, body)

    assert payload.data == data
    assert payload.mime_type == "image/png"
    assert payload.filename == "scene.png"


def test_small_chunks_and_live_stream_match_buffered_body():
    data = image_bytes(3000)
    body, content_type = build_multipart([("image", data, "scene.jpg", "image/jpeg")])
    headers = {"content-type": content_type}
    ingest = MultipartIngest()

    buffered = ingest.parse_bytes(headers, body)
    chunked = ingest.parse_chunks(headers, (body[i:i + 7] for i in range(0, len(body), 7)))
    streamed = parse_stream(ingest, headers, CountingStream(body, chunk_size=13))

    assert buffered == chunked == streamed
    assert streamed.data == data


def test_part_without_content_type_defaults_to_octet_stream():
    body, content_type = build_multipart([("image", b"abc", None, None)])

    payload = MultipartIngest().parse_bytes({"Content-Type": content_type}, body)

    assert payload.mime_type == "application/octet-stream"
    assert payload.filename is None
    assert payload.data == b"abc"


def test_missing_image_field_returns_none():
    body, content_type = build_multipart([("photo", image_bytes(100), "scene.png", "image/png")])

    assert MultipartIngest().parse_bytes({"Content-Type": content_type}, body) is None


def test_other_fields_are_drained_even_when_larger_than_limit():
    image = image_bytes(200)
    body, content_type = build_multipart(
        [
            ("note", image_bytes(8192), None, "text/plain"),
            ("image", image, "scene.png", "image/png"),
            ("trailer", image_bytes(8192), "big.bin", "application/octet-stream"),
        ]
    )

    payload = MultipartIngest(max_bytes=1024).parse_bytes({"Content-Type": content_type}, body)

    assert payload.data == image


def test_only_first_image_part_is_kept():
    first = image_bytes(100)
    body, content_type = build_multipart(
        [
            ("image", first, "first.png", "image/png"),
            ("image", b"second", "second.png", "image/png"),
        ]
    )

    payload = MultipartIngest().parse_bytes({"Content-Type": content_type}, body)

    assert payload.data == first
    assert payload.filename == "first.png"


def test_image_at_limit_is_accepted():
    data = image_bytes(1024)
    body, content_type = build_multipart([("image", data, "scene.png", "image/png")])

    payload = MultipartIngest(max_bytes=1024).parse_bytes({"Content-Type": content_type}, body)

    assert payload.size == 1024


def test_image_over_limit_fails():
    body, content_type = build_multipart([("image", image_bytes(1025), "scene.png", "image/png")])

    with pytest.raises(PayloadTooLargeError) as excinfo:
        MultipartIngest(max_bytes=1024).parse_bytes({"Content-Type": content_type}, body)

    assert excinfo.value.limit == 1024


def test_oversized_stream_is_aborted_early():
    body, content_type = build_multipart([("image", image_bytes(64 * 1024), "scene.png", "image/png")])
    stream = CountingStream(body, chunk_size=256)

    with pytest.raises(PayloadTooLargeError):
        parse_stream(MultipartIngest(max_bytes=1024), {"content-type": content_type}, stream)

    assert stream.pulled < stream.total // 4


@pytest.mark.parametrize(
    "headers",
    [
        {"content-type": "application/json"},
        {"content-type": "text/plain; boundary=abc"},
        {},
    ],
)
def test_non_multipart_content_type_reads_nothing(headers):
    body, _ = build_multipart([("image", b"abc", "a.png", "image/png")])
    stream = CountingStream(body)

    with pytest.raises(RequestFormatError):
        parse_stream(MultipartIngest(), headers, stream)

    assert stream.pulled == 0


def test_multipart_without_boundary_is_rejected():
    with pytest.raises(RequestFormatError):
        MultipartIngest().check_content_type({"Content-Type": "multipart/form-data"})


def test_boundary_is_returned():
    boundary = MultipartIngest().check_content_type(
        {"Content-Type": 'multipart/form-data; boundary="xyz"'}
    )

    assert boundary == b"xyz"


def test_truncated_body_is_a_multipart_error():
    body, content_type = build_multipart([("image", image_bytes(500), "scene.png", "image/png")])

    with pytest.raises(MultipartError):
        MultipartIngest().parse_bytes({"Content-Type": content_type}, body[:300])


def test_garbage_body_is_a_multipart_error():
    _, content_type = build_multipart([])

    with pytest.raises(MultipartError):
        MultipartIngest().parse_bytes({"Content-Type": content_type}, b"this is not multipart at all")


def test_source_io_error_is_a_multipart_error():
    body, content_type = build_multipart([("image", b"abc", "a.png", "image/png")])

    def broken_source():
        yield body[:20]
        raise OSError("connection reset")

    with pytest.raises(MultipartError):
        MultipartIngest().parse_chunks({"Content-Type": content_type}, broken_source())


def test_oversized_part_header_is_rejected_while_streaming():
    head = (
        f"--{BOUNDARY}\r\n"
        'Content-Disposition: form-data; name="note"\r\n'
        "X-Pad: "
    ).encode()
    body = head + b"A" * (MAX_HEADER_BYTES * 16)
    _, content_type = build_multipart([])
    stream = CountingStream(body, chunk_size=1024)

    with pytest.raises(MultipartError):
        parse_stream(MultipartIngest(max_bytes=1024), {"content-type": content_type}, stream)

    assert stream.pulled < stream.total // 2


def test_too_many_part_headers_are_rejected():
    headers = "".join(f"X-Extra-{i}: {i}\r\n" for i in range(MAX_HEADERS_PER_PART + 1))
    body = (
        f"--{BOUNDARY}\r\n"
        'Content-Disposition: form-data; name="image"; filename="a.png"\r\n'
        f"{headers}\r\n"
        "abc\r\n"
        f"--{BOUNDARY}--\r\n"
    ).encode()
    _, content_type = build_multipart([])

    with pytest.raises(MultipartError):
        MultipartIngest().parse_bytes({"Content-Type": content_type}, body)
