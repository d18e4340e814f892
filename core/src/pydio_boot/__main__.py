from __future__ import annotations

import argparse
import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from urllib.parse import urljoin

from pydio_boot.bootstrap import BootstrapCoordinator
from pydio_boot.config import load_client_config
from pydio_boot.document import HostDocument
from pydio_boot.headless import HeadlessApplication
from pydio_boot.home import ensure_client_layout, resolve_client_home
from pydio_boot.session import ClientContext


def _parse_param(text: str) -> tuple[str, Any]:
    key, sep, raw = text.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"expected KEY=VALUE, got {text!r}")
    try:
        return key, json.loads(raw)
    except json.JSONDecodeError:
        return key, raw


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pydio_boot",
        description="Bootstrap a headless client session and print the resolved configuration.",
    )
    parser.add_argument("--booter-url", required=True, help="Boot configuration endpoint.")
    parser.add_argument(
        "--script",
        action="append",
        default=[],
        help="Script source of the host page (repeatable); locates the resources folder.",
    )
    parser.add_argument("--location", help="Host page URL (defaults to the booter URL).")
    parser.add_argument(
        "--param",
        action="append",
        default=[],
        type=_parse_param,
        help="Start parameter as KEY=VALUE; JSON values are decoded.",
    )
    parser.add_argument("--handoff", type=Path, help="Session handoff JSON from an opener window.")
    parser.add_argument("--home", type=Path, help="Client home (overrides PYDIO_BOOT_HOME).")
    parser.add_argument(
        "--export-handoff", type=Path, help="Write a handoff for child windows after startup."
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    home = args.home.resolve() if args.home else resolve_client_home()
    paths = ensure_client_layout(home)
    config = load_client_config(paths)

    # Configure logging
    logging.basicConfig(
        level=config.logging.level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            RotatingFileHandler(
                paths.log_path,
                maxBytes=config.logging.max_size_mb * 1024 * 1024,
                backupCount=config.logging.backup_count,
                delay=True,
            ),
            logging.StreamHandler(),
        ],
    )

    location = args.location or args.booter_url
    start_parameters: dict[str, Any] = {"BOOTER_URL": args.booter_url}
    start_parameters.update(dict(args.param))

    context = ClientContext(config=config, base_href=urljoin(location, "."))
    coordinator = BootstrapCoordinator(
        start_parameters,
        application_factory=HeadlessApplication,
        document=HostDocument(location, args.script),
        context=context,
        opener_handoff=args.handoff.read_text(encoding="utf-8") if args.handoff else None,
    )
    application = coordinator.start_blocking()
    if context.http_client is not None:
        context.http_client.close()

    if application is not None and args.export_handoff:
        args.export_handoff.write_text(
            coordinator.export_handoff().model_dump_json(indent=2) + "\n", encoding="utf-8"
        )

    print(json.dumps(coordinator.parameters.to_dict(), indent=2, default=str))
    return 0 if application is not None else 1


if __name__ == "__main__":
    raise SystemExit(main())
