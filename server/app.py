# =============================================================================
# Echo Scene Narrator - FastAPI Server Application
# =============================================================================
# Defines the HTTP API for the describe service: receives a multipart image
# upload, stream-parses the single bounded "image" field, asks the vision
# model for a short scene description with a distance estimate, and returns
# that description as plain text.
#
# Collaborators (config, multipart ingest, vision describer) are injected
# through create_app() and kept on app.state for the process lifetime.
# =============================================================================

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse, Response

from config import Config, get_config
from server.ingest import MultipartIngest
from server.vision import VisionDescriber
from shared.errors import AuthError, PayloadTooLargeError, RequestFormatError
from shared.schemas import HealthResponse

logger = logging.getLogger(__name__)

_ROUTE_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Methods": "GET",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Max-Age": "3600",
}

_MISSING_KEY_MESSAGE = "Server error: Missing OPENAI_API_KEY environment variable."
_MISSING_IMAGE_MESSAGE = (
    'Bad Request: No image uploaded. Please include an "{field}" field in the form data.'
)


# ---------------------------------------------------------------------------
# Route handlers
# ---------------------------------------------------------------------------

def _get_describer(app: FastAPI) -> VisionDescriber:
    """Return the injected describer, building one from config on first use."""
    if app.state.describer is None:
        app.state.describer = VisionDescriber.from_config(app.state.config)
    return app.state.describer


def health_check(request: Request) -> HealthResponse:
    """
    Health check endpoint.

    Reports whether a vision credential is configured and the server uptime.
    """
    config = request.app.state.config
    vision_configured = bool(config.vision_api_key)
    return HealthResponse(
        status="ok" if vision_configured else "misconfigured",
        vision_configured=vision_configured,
        uptime_seconds=round(time.time() - request.app.state.start_time, 2),
    )


async def describe_image(request: Request) -> Response:
    """
    Describe the scene in an uploaded image.

    Accepts every method so that the CORS preflight and the method gate are
    evaluated here, independently of each other:
        - OPTIONS (CORS enabled) -> 204 with preflight headers
        - anything but POST      -> 405
        - no vision credential   -> 500, before reading the body
        - no "image" field       -> 400
        - bad Content-Type       -> 400
        - image over the limit   -> 413
        - credential rejected    -> 401
        - any other failure      -> 500 with the failure message
        - success                -> 200 with the description as plain text
    """
    app = request.app
    config: Config = app.state.config

    if request.method == "OPTIONS" and config.cors_enabled:
        return Response(status_code=204, headers=_PREFLIGHT_HEADERS)

    if request.method != "POST":
        return PlainTextResponse(
            "Method Not Allowed. Use POST.",
            status_code=405,
            headers={"Allow": "POST"},
        )

    if not config.vision_api_key:
        logger.error("Rejecting describe request: OPENAI_API_KEY is not configured")
        return PlainTextResponse(_MISSING_KEY_MESSAGE, status_code=500)

    ingest: MultipartIngest = app.state.ingest
    try:
        image = await ingest.parse_stream(request.headers, request.stream())
        if image is None:
            logger.warning("Describe request without an %r field", ingest.field_name)
            return PlainTextResponse(
                _MISSING_IMAGE_MESSAGE.format(field=ingest.field_name),
                status_code=400,
            )

        describer = _get_describer(app)
        inference_start = time.time()
        description = await run_in_threadpool(describer.describe, image)
        processing_time_ms = (time.time() - inference_start) * 1000.0

    except RequestFormatError as exc:
        logger.warning("Rejected describe request: %s", exc)
        return PlainTextResponse(f"Bad Request: {exc}", status_code=400)
    except PayloadTooLargeError as exc:
        logger.warning("Rejected describe request: %s", exc)
        return PlainTextResponse(f"Payload Too Large: {exc}", status_code=413)
    except AuthError:
        logger.exception("Vision credential rejected")
        return PlainTextResponse("Unauthorized: Invalid API key.", status_code=401)
    except Exception as exc:
        logger.exception("Error processing image")
        return PlainTextResponse(f"Server error: {exc}", status_code=500)

    logger.info(
        "Described %s (%d bytes, %s) in %.1fms:\n%s",
        image.filename or "<unnamed>",
        image.size,
        image.mime_type,
        processing_time_ms,
        description,
    )
    return PlainTextResponse(description, status_code=200)


async def _allow_any_origin(request: Request, call_next) -> Response:
    response = await call_next(request)
    response.headers["Access-Control-Allow-Origin"] = "*"
    return response


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    config: Optional[Config] = None,
    describer: Optional[VisionDescriber] = None,
    ingest: Optional[MultipartIngest] = None,
) -> FastAPI:
    """
    Build the describe service.

    Args:
        config:    Process configuration; defaults to the global singleton.
        describer: Vision describer; when omitted one is created from config
                   on the first request that needs it.
        ingest:    Multipart ingest; defaults to the configured field name
                   and size limit.

    Returns:
        The configured FastAPI application.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Log startup state and release the vision client on shutdown."""
        logger.info(
            "Describe server ready (path=%s, field=%r, limit=%d bytes, model=%s, cors=%s)",
            config.describe_path,
            config.image_field_name,
            config.max_image_bytes,
            config.vision_model,
            config.cors_enabled,
        )
        if not config.vision_api_key:
            logger.warning("OPENAI_API_KEY is not set; describe requests will fail with 500")
        yield

        logger.info("Shutting down server...")
        if app.state.describer is not None:
            app.state.describer.close()

    app = FastAPI(
        title="Echo Scene Narrator",
        description=(
            "Receives a photo from a handheld client, asks a vision-language "
            "model for a one-sentence scene description with a distance "
            "estimate, and returns it as plain text for speech playback."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.describer = describer
    app.state.ingest = ingest or MultipartIngest(
        field_name=config.image_field_name,
        max_bytes=config.max_image_bytes,
    )
    app.state.start_time = time.time()

    if config.cors_enabled:
        app.middleware("http")(_allow_any_origin)

    app.add_api_route("/health", health_check, methods=["GET"], response_model=HealthResponse)
    app.add_api_route(config.describe_path, describe_image, methods=_ROUTE_METHODS)
    return app


app = create_app()
