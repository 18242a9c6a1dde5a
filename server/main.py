# =============================================================================
# Echo Scene Narrator - Server Entry Point
# =============================================================================
# CLI entry point for starting the FastAPI describe server under uvicorn.
# =============================================================================

import argparse
import logging

import uvicorn

from config import get_config


def main():
    """Parse CLI arguments, apply overrides, and start the server."""
    parser = argparse.ArgumentParser(
        description="Echo Scene Narrator — Describe Server",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--host", type=str, default=None, help="Server bind address")
    parser.add_argument("--port", type=int, default=None, help="Server bind port")
    parser.add_argument("--model", type=str, default=None, help="Vision model name")
    parser.add_argument(
        "--base-url", type=str, default=None,
        help="Base URL of an OpenAI-compatible vision API",
    )
    parser.add_argument(
        "--no-cors", action="store_true",
        help="Disable the open CORS headers and OPTIONS preflight",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    config = get_config()

    if args.host is not None:
        config.server_host = args.host
    if args.port is not None:
        config.server_port = args.port
    if args.model is not None:
        config.vision_model = args.model
    if args.base_url is not None:
        config.vision_base_url = args.base_url
    if args.no_cors:
        config.cors_enabled = False

    config.server_url = f"http://{config.server_host}:{config.server_port}"

    print("\n" + "=" * 60)
    print("  Echo Scene Narrator — Describe Server")
    print("=" * 60)
    print(f"  Vision model : {config.vision_model}")
    print(f"  Vision API   : {config.vision_base_url or 'default'}")
    print(f"  Credential   : {'set' if config.vision_api_key else 'MISSING'}")
    print(f"  Upload limit : {config.max_image_bytes} bytes ({config.image_field_name!r})")
    print(f"  CORS         : {'on' if config.cors_enabled else 'off'}")
    print(f"  Listening    : {config.server_url}{config.describe_path}")
    print("=" * 60 + "\n")

    uvicorn.run(
        "server.app:app",
        host=config.server_host,
        port=config.server_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
