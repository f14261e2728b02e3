"""Command line interface generating image and layer JSON documents."""

from __future__ import annotations

import argparse
import json
import logging
import platform
import sys
from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from nix2container.closure import read_closure_graph_file, sorted_paths_by_popularity
from nix2container.image import (
    merge_other_image_config,
    new_image_from_dir,
    new_image_from_file,
    new_image_from_manifest,
)
from nix2container.layers import new_layers, new_layers_non_reproducible
from nix2container.types import (
    IMAGE_VERSION,
    History,
    Image,
    ImageConfig,
    Layer,
    PermPath,
    RewritePath,
    new_layers_from_file,
    parse_time,
)

logger = logging.getLogger(__name__)

# Zero time used as creation date when none is given.
EPOCH_ZERO = datetime(1, 1, 1, tzinfo=timezone.utc)

_ARCHITECTURES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv6l": "arm",
    "ppc64le": "ppc64le",
    "s390x": "s390x",
    "riscv64": "riscv64",
}


def _default_arch() -> str:
    machine = platform.machine().lower()
    return _ARCHITECTURES.get(machine, machine)


def _read_json(filename: str) -> Any:
    with open(filename, encoding="utf-8") as handle:
        return json.load(handle)


def _write_json(filename: str, document: Any) -> None:
    with open(filename, "w", encoding="utf-8") as handle:
        handle.write(json.dumps(document, indent="\t", ensure_ascii=False))


def read_perms_file(filename: str) -> list[PermPath]:
    """Read a JSON list of permission rules."""
    return [PermPath.from_dict(item) for item in _read_json(filename) or []]


def read_rewrites_file(filename: str) -> list[RewritePath]:
    """Read a JSON list of path rewrites."""
    return [RewritePath.from_dict(item) for item in _read_json(filename) or []]


def read_history_file(filename: str) -> History:
    """Read a JSON layer history entry."""
    return History.from_dict(_read_json(filename))


def get_layers_from_files(layers_paths: Iterable[str]) -> list[Layer]:
    """Concatenate the layers read from several layer files."""
    layers: list[Layer] = []
    for layers_path in layers_paths:
        layers.extend(new_layers_from_file(layers_path))
    return layers


def layers_to_json(output_filename: str, layers: Sequence[Layer]) -> None:
    """Write layers as an indented JSON list."""
    _write_json(output_filename, [layer.to_dict() for layer in layers])
    logger.info("Layers have been written to %s", output_filename)


def _write_image(output_filename: str, image: Image) -> None:
    _write_json(output_filename, image.to_dict())
    logger.info("Image has been written to %s", output_filename)


def image_from_dir(output_filename: str, directory: str) -> None:
    """Write the image document of a Skopeo dir transport directory."""
    _write_image(output_filename, new_image_from_dir(directory))


def image_from_manifest(output_filename: str, manifest_filename: str, blobs_filename: str) -> None:
    """Write the image document of a registry manifest and its blob map."""
    _write_image(output_filename, new_image_from_manifest(manifest_filename, blobs_filename))


def build_image(
    output_filename: str,
    image_config_path: str,
    from_image_filename: str,
    from_image_inherit_config: bool,
    layer_paths: Iterable[str],
    arch: str,
    created: datetime,
) -> Image:
    """Assemble an image document from a config and layer files and write it."""
    image = Image(version=IMAGE_VERSION)

    logger.info("Getting image configuration from %s", image_config_path)
    image_config = ImageConfig.from_dict(_read_json(image_config_path))

    merge_config = False
    if from_image_filename:
        from_image = new_image_from_file(from_image_filename)
        image.layers.extend(from_image.layers)
        if from_image_inherit_config:
            image.image_config = from_image.image_config
            merge_config = True
        logger.info(
            "Using base image %s containing %d layers",
            from_image_filename,
            len(from_image.layers),
        )

    image.arch = arch
    if merge_config:
        # The configuration given here goes on top of the base image's.
        merge_other_image_config(image.image_config, image_config)
    else:
        image.image_config = image_config
    image.created = created

    for path in layer_paths:
        layers = new_layers_from_file(path)
        logger.info("Adding %d layers from %s", len(layers), path)
        image.layers.extend(layers)

    _write_image(output_filename, image)
    return image


def _created(value: str) -> datetime:
    try:
        return parse_time(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nix2container",
        description="Generate container image from Nix storepaths",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="verbose logging")
    commands = parser.add_subparsers(dest="command")

    image = commands.add_parser(
        "image", help="Generate an image.json file from a image configuration and layers"
    )
    image.add_argument("output_filename")
    image.add_argument("config")
    image.add_argument("layers", nargs="+")
    image.add_argument("--from-image", default="", help="A JSON file describing the base image")
    image.add_argument(
        "--arch", default=_default_arch(), help="Target CPU architecture of the image"
    )
    image.add_argument(
        "--from-image-inherit-config",
        action="store_true",
        help="Whether the image config should be inherited from the base image",
    )
    image.add_argument(
        "--created", type=_created, default=EPOCH_ZERO,
        help="Timestamp at which the image was created",
    )

    from_dir = commands.add_parser(
        "image-from-dir",
        help="Write an image.json file to OUTPUT-FILENAME from a DIRECTORY "
        "populated by the Skopeo dir transport",
    )
    from_dir.add_argument("output_filename")
    from_dir.add_argument("directory")

    from_manifest = commands.add_parser(
        "image-from-manifest",
        help="Write an image.json file to OUTPUT-FILENAME from a skopeo raw "
        "manifest and blobs JSON.",
    )
    from_manifest.add_argument("output_filename")
    from_manifest.add_argument("manifest")
    from_manifest.add_argument("blobs")

    for name, reproducible in (
        ("layers-from-reproducible-storepaths", True),
        ("layers-from-non-reproducible-storepaths", False),
    ):
        layers = commands.add_parser(
            name,
            help="Generate a layers.json file from a list of "
            + ("reproducible paths" if reproducible else "paths"),
        )
        layers.set_defaults(reproducible=reproducible)
        layers.add_argument("output_filename")
        layers.add_argument("closure_graph")
        layers.add_argument("parents", nargs="*")
        layers.add_argument("--ignore", default="", help="Ignore the path from the list of storepaths")
        if not reproducible:
            layers.add_argument(
                "--tar-directory", default="",
                help="The directory where tar of layers are created.",
            )
        layers.add_argument("--rewrites", default="", help="A JSON file containing path rewrites")
        layers.add_argument("--perms", default="", help="A JSON file containing file permissions")
        layers.add_argument("--history", default="", help="A JSON file containing layer history")
        layers.add_argument("--max-layers", type=int, default=1, help="The maximum number of layers")
    return parser


def _run_layers(args: argparse.Namespace) -> None:
    storepaths = sorted_paths_by_popularity(read_closure_graph_file(args.closure_graph))
    parents = get_layers_from_files(args.parents)
    perms = read_perms_file(args.perms) if args.perms else []
    rewrites = read_rewrites_file(args.rewrites) if args.rewrites else []
    history = read_history_file(args.history) if args.history else History()
    if args.reproducible:
        layers = new_layers(
            storepaths, args.max_layers, parents, rewrites, args.ignore, perms, history
        )
    else:
        layers = new_layers_non_reproducible(
            storepaths, args.max_layers, args.tar_directory,
            parents, rewrites, args.ignore, perms, history,
        )
    layers_to_json(args.output_filename, layers)


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(format="%(levelname)s %(message)s")
    package_logger = logging.getLogger("nix2container")
    package_logger.setLevel(logging.INFO)
    if debug:
        logger.info("Debug logs enabled")
        package_logger.setLevel(logging.DEBUG)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the process exit status."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.debug)

    if args.command is None:
        parser.print_help()
        return 0
    try:
        if args.command == "image":
            build_image(
                args.output_filename, args.config, args.from_image,
                args.from_image_inherit_config, args.layers, args.arch, args.created,
            )
        elif args.command == "image-from-dir":
            image_from_dir(args.output_filename, args.directory)
        elif args.command == "image-from-manifest":
            image_from_manifest(args.output_filename, args.manifest, args.blobs)
        else:
            _run_layers(args)
    except (OSError, ValueError, LookupError) as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())