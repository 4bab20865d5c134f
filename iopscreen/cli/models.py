from __future__ import annotations

import argparse
import sys
from pathlib import Path

from iopscreen import ArtifactCache, download_model
from iopscreen._cli_utils import add_log_level_argument, configure_logging, parse_model_id
from iopscreen.download import default_cache_dir
from iopscreen.errors import ArtifactError
from iopscreen.models.base import read_graph_metadata
from iopscreen.registry import descriptor_url, get_model_spec, list_models


def _cmd_list() -> None:
    print("model_id         input_size  normalization  remote_path")
    for spec in list_models():
        h, w = spec.input_size
        size = f"{h}x{w}"
        print(
            f"{spec.model_id:<16} {size:<11} {spec.normalization.value:<14} {spec.remote_path or '/'}"
        )


def _cmd_info(model_id: str, base_url: str | None, cache_dir: Path | None) -> None:
    spec = get_model_spec(model_id)
    print(f"model id        {spec.model_id}")
    print(f"input size      {spec.input_size[0]}x{spec.input_size[1]}")
    print(f"normalization   {spec.normalization.value}")
    print(f"descriptor url  {descriptor_url(spec, base_url)}")
    if spec.aliases:
        print(f"aliases         {', '.join(spec.aliases)}")
    if spec.description:
        print(f"description     {spec.description}")

    cache = ArtifactCache.for_model(spec, base_url=base_url, cache_dir=cache_dir)
    cached = cache.cached_files()
    if not cached:
        print(f"cache           not downloaded ({cache.model_dir})")
        return

    print(f"cache           {cache.model_dir}")
    for path in cached:
        print(f"  {path.name:<20} {path.stat().st_size / (1024 * 1024):.2f} MiB")
    try:
        descriptor = cache.validate_cache()
        metadata = read_graph_metadata(cache.model_dir / descriptor.graph_shard)
    except (ArtifactError, ValueError) as exc:
        print(f"cache status    invalid ({exc})")
        return
    print(f"producer        {metadata['producer'] or 'unknown'}")
    print(f"opsets          {metadata['opsets']}")
    for graph_input in metadata["inputs"]:
        print(f"graph input     {graph_input['name']} {graph_input['shape']}")


def _cmd_download(
    model_id: str, base_url: str | None, cache_dir: Path | None, force: bool
) -> None:
    model_dir = download_model(
        model_id,
        base_url=base_url,
        cache_dir=cache_dir,
        force=force,
        show_progress=True,
    )
    print(f"Downloaded model: {model_dir}")


def _cmd_clear(model_id: str, cache_dir: Path | None) -> None:
    cache = ArtifactCache.for_model(model_id, cache_dir=cache_dir)
    cache.clear()
    print(f"Cleared model cache: {cache.model_dir}")


def _cmd_probe(model_id: str, base_url: str | None) -> int:
    cache = ArtifactCache.for_model(model_id, base_url=base_url)
    status = cache.probe()
    if status is None:
        print(f"{cache.descriptor_url}: unreachable")
        return 1
    print(f"{cache.descriptor_url}: HTTP {status}")
    return 0 if 200 <= status < 300 else 1


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Inspect, download and clear screening model artifacts."
    )
    add_log_level_argument(parser)
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", help="List available model IDs.")

    info_parser = subparsers.add_parser("info", help="Show model metadata.")
    info_parser.add_argument("model_id", type=parse_model_id)
    info_parser.add_argument("--base-url", type=str, default=None)
    info_parser.add_argument("--cache-dir", type=Path, default=None)

    download_parser = subparsers.add_parser("download", help="Download a model.")
    download_parser.add_argument("model_id", type=parse_model_id)
    download_parser.add_argument("--base-url", type=str, default=None)
    download_parser.add_argument(
        "--cache-dir",
        type=Path,
        default=None,
        help=f"Destination cache directory. Default: {default_cache_dir()}",
    )
    download_parser.add_argument(
        "--force",
        action="store_true",
        help="Re-download even if cached.",
    )

    clear_parser = subparsers.add_parser("clear", help="Remove a cached model.")
    clear_parser.add_argument("model_id", type=parse_model_id)
    clear_parser.add_argument("--cache-dir", type=Path, default=None)

    probe_parser = subparsers.add_parser(
        "probe", help="Check that a model descriptor is reachable."
    )
    probe_parser.add_argument("model_id", type=parse_model_id)
    probe_parser.add_argument("--base-url", type=str, default=None)

    args = parser.parse_args()
    configure_logging(args.log_level)

    if args.command == "list":
        _cmd_list()
        return

    if args.command == "info":
        _cmd_info(args.model_id, args.base_url, args.cache_dir)
        return

    if args.command == "download":
        try:
            _cmd_download(args.model_id, args.base_url, args.cache_dir, args.force)
        except ArtifactError as exc:
            print(f"Download failed: {exc}", file=sys.stderr)
            sys.exit(1)
        return

    if args.command == "clear":
        _cmd_clear(args.model_id, args.cache_dir)
        return

    if args.command == "probe":
        sys.exit(_cmd_probe(args.model_id, args.base_url))

    raise RuntimeError(f"Unsupported command: {args.command}")


if __name__ == "__main__":
    main()
