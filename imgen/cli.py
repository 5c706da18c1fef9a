"""
imgen command line interface.

Usage:
    imgen create "a children's book drawing of a baby otter"
    imgen create @prompt.txt -n 2 --quality high --open
    imgen edit "add a red hat" -i cat.png
    imgen edit "replace the sky with a sunset" -i photo.png -m mask.png --mode inpaint
    cat photo.png | imgen edit "make it watercolor" -i -
    imgen config set-key sk-...
    imgen serve --port 8000
"""

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from loguru import logger

from . import __version__
from .api import DEFAULT_MODEL, DecodedResponse, build_create_request, build_edit_request, validate_mode
from .client import ImgenClient
from .config import (
    DEFAULT_BASE_URL,
    Config,
    config_path,
    load_env,
    load_server_config,
    mask_key,
    resolve_api_key,
)
from .exceptions import ImgenError
from .inputs import ImageSource, PromptSource, check_single_stdin
from .log import setup_logging
from .output import open_in_viewer, prompt_prefix, save_images
from .spinner import Spinner

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="imgen",
        description="Generate and edit images using OpenAI's image generation models",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-k", "--api-key",
        help="OpenAI API key (can also be set via OPENAI_API_KEY environment variable)",
    )
    parser.add_argument(
        "--env-file", type=Path, default=Path(".env"),
        help="dotenv file to load before reading the environment (default: .env)",
    )
    parser.add_argument(
        "--base-url",
        help=f"API base URL (default: OPENAI_BASE_URL or {DEFAULT_BASE_URL})",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="More log output (repeatable)")
    parser.add_argument("-q", "--quiet", action="count", default=0, help="Less log output (repeatable)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # create
    create = subparsers.add_parser("create", help="Create an image given a prompt")
    create.add_argument("prompt", help="Prompt text, a file path, @file or '-' for stdin")
    create.add_argument("-n", type=int, default=1, help="Number of images to generate (1-10)")
    create.add_argument(
        "--size", default="1024x1024",
        choices=["1024x1024", "1536x1024", "1024x1536", "auto"],
    )
    create.add_argument("--quality", default="low", choices=["low", "medium", "high", "auto"])
    create.add_argument("--background", default="auto", choices=["transparent", "opaque", "auto"])
    create.add_argument("--moderation", default="low", choices=["low", "auto"])
    create.add_argument("--output-compression", type=int, default=100, help="Compression level 0-100")
    create.add_argument("--output-format", default="png", choices=["png", "jpeg", "webp"])
    _add_common_output_args(create)

    # edit
    edit = subparsers.add_parser(
        "edit", help="Create an edited or extended image given source image(s) and a prompt"
    )
    edit.add_argument("prompt", help="Prompt text, a file path, @file or '-' for stdin")
    edit.add_argument(
        "-i", "--image", action="append", default=[],
        help="Image to edit (path or '-' for stdin). Repeat for several images",
    )
    edit.add_argument("-m", "--mask", help="Image whose transparent areas indicate where to edit")
    edit.add_argument("--mode", default=None, choices=["edit", "inpaint"],
                      help="'inpaint' requires --mask (default: inpaint when a mask is given)")
    edit.add_argument("-n", type=int, default=1, help="Number of images to generate (1-10)")
    edit.add_argument("--quality", default="low", choices=["low", "medium", "high", "auto"])
    edit.add_argument(
        "--size", default="1024x1024",
        choices=["1024x1024", "1536x1024", "1024x1536", "auto"],
    )
    _add_common_output_args(edit)

    # config
    config = subparsers.add_parser("config", help="Manage the saved configuration")
    config_sub = config.add_subparsers(dest="config_command", required=True)
    set_key = config_sub.add_parser("set-key", help="Save the API key to the config file")
    set_key.add_argument("key")
    config_sub.add_parser("path", help="Print the config file location")
    config_sub.add_parser("show", help="Show the resolved configuration")

    # serve
    serve = subparsers.add_parser("serve", help="Run the web frontend")
    serve.add_argument("--host", default=None, help="Bind address (default: IMGEN_HOST or 127.0.0.1)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: IMGEN_PORT or 8000)")

    return parser


def _add_common_output_args(parser: argparse.ArgumentParser):
    parser.add_argument("--model", default=DEFAULT_MODEL, help="Model to use (default: %(default)s)")
    parser.add_argument(
        "-o", "--output",
        help="Output file prefix (default: derived from the prompt)",
    )
    parser.add_argument("--open", action="store_true", help="Open the images in the default viewer")


# ============ Commands ============


def run_create(args: argparse.Namespace) -> List[Path]:
    prompt_source = PromptSource.parse(args.prompt)
    prompt = prompt_source.read()

    request = build_create_request(
        prompt,
        model=args.model,
        n=args.n,
        size=args.size,
        quality=args.quality,
        background=args.background,
        moderation=args.moderation,
        output_compression=args.output_compression,
        output_format=args.output_format,
    )

    with ImgenClient(resolve_api_key(args.api_key), base_url=args.base_url) as client:
        with Spinner("Generating image(s)..."):
            response = client.create_images(request)

    return _finish(response, prompt, args, args.output_format)


def run_edit(args: argparse.Namespace) -> List[Path]:
    mode = args.mode or ("inpaint" if args.mask else "edit")
    validate_mode(mode, args.image, args.mask)

    prompt_source = PromptSource.parse(args.prompt)
    image_sources = [ImageSource.parse(value) for value in args.image]
    mask_source = ImageSource.parse(args.mask) if args.mask else None
    check_single_stdin(prompt_source, image_sources, mask_source)

    prompt = prompt_source.read()
    images = [source.read() for source in image_sources]
    mask = mask_source.read() if mask_source else None

    request = build_edit_request(
        prompt,
        images,
        mask=mask,
        mode=mode,
        model=args.model,
        n=args.n,
        quality=args.quality,
        size=args.size,
    )

    with ImgenClient(resolve_api_key(args.api_key), base_url=args.base_url) as client:
        with Spinner("Editing image(s)..."):
            response = client.edit_images(request)

    return _finish(response, prompt, args, "png")


def _finish(response: DecodedResponse, prompt: str, args: argparse.Namespace, output_format: str) -> List[Path]:
    if len(response.images) < args.n:
        logger.warning(f"Requested {args.n} image(s), received {len(response.images)}")

    prefix = args.output or prompt_prefix(prompt)
    paths = save_images(response, prefix, output_format=output_format)

    if response.usage is not None:
        usage = response.usage
        logger.info(
            f"Usage: {usage.input_tokens} input + {usage.output_tokens} output tokens, "
            f"cost ${usage.cost():.4f}"
        )
    for image in response.images:
        if image.revised_prompt:
            logger.info(f"Revised prompt: {image.revised_prompt}")

    for path in paths:
        print(path)
        if args.open:
            open_in_viewer(path)

    logger.success(f"Saved {len(paths)} image(s)")
    return paths


def run_config(args: argparse.Namespace):
    if args.config_command == "set-key":
        path = Config(openai_api_key=args.key).save()
        print(f"API key saved to {path}")
    elif args.config_command == "path":
        print(config_path() or "(unknown)")
    elif args.config_command == "show":
        print(f"config file: {config_path() or '(unknown)'}")
        print(f"api key:     {mask_key(resolve_api_key(args.api_key))}")
        print(f"base url:    {args.base_url}")


def run_serve(args: argparse.Namespace):
    import uvicorn

    settings = load_server_config()

    from .server import CONFIG, app

    CONFIG.update(settings)
    host = args.host or CONFIG["host"]
    port = args.port or CONFIG["port"]
    if args.api_key:
        CONFIG["api_key"] = args.api_key
    uvicorn.run(app, host=host, port=port, log_config=None)


COMMANDS = {
    "create": run_create,
    "edit": run_edit,
    "config": run_config,
    "serve": run_serve,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose, args.quiet)
    load_env(args.env_file)
    args.base_url = args.base_url or os.getenv("OPENAI_BASE_URL", DEFAULT_BASE_URL)

    try:
        COMMANDS[args.command](args)
    except ImgenError as e:
        logger.opt(exception=e).debug("Command failed")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED
    return EXIT_OK


def run():
    sys.exit(main())
