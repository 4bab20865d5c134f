from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from iopscreen import Screener
from iopscreen._cli_utils import add_log_level_argument, configure_logging, parse_model_id
from iopscreen.errors import IOPScreenError
from iopscreen.registry import DEFAULT_MODEL_ID


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Screen a fundus photo for elevated intraocular pressure risk."
    )
    parser.add_argument("--image", type=Path, required=True, help="Path to input image.")
    parser.add_argument(
        "--model",
        type=parse_model_id,
        default=DEFAULT_MODEL_ID,
        help=f"Registry model ID. Default: {DEFAULT_MODEL_ID}",
    )
    parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help="Custom model cache directory for downloaded artifacts.",
    )
    parser.add_argument(
        "--base-url",
        type=str,
        default=None,
        help="Remote origin holding the model directories.",
    )
    parser.add_argument(
        "--force-reload",
        action="store_true",
        help="Clear the cached model and download it again before screening.",
    )
    parser.add_argument(
        "--check-blur",
        action="store_true",
        help="Reject blurry images before screening.",
    )
    parser.add_argument(
        "--hardware-acceleration",
        action="store_true",
        help="Prefer accelerated ONNX Runtime providers when available.",
    )
    parser.add_argument("--json", action="store_true", help="Print the result as JSON.")
    add_log_level_argument(parser)

    args = parser.parse_args()
    configure_logging(args.log_level)

    with Screener(
        args.model,
        base_url=args.base_url,
        cache_dir=args.cache_dir,
        hardware_acceleration=args.hardware_acceleration,
        show_download_progress=not args.json,
    ) as screener:
        try:
            if args.check_blur and not screener.check_quality(args.image):
                print(f"Image is too blurry to screen: {args.image}", file=sys.stderr)
                sys.exit(2)
            screener.ensure_model(force_reload=args.force_reload)
            result = screener.screen(args.image)
        except IOPScreenError as exc:
            print(f"Screening failed: {exc}", file=sys.stderr)
            sys.exit(1)

    if args.json:
        print(json.dumps(result.to_dict()))
    else:
        line = f"{result.label.value} (confidence {result.confidence:.4f})"
        if result.error:
            line += f": {result.error}"
        print(line)

    if not result.ok:
        sys.exit(1)


if __name__ == "__main__":
    main()
