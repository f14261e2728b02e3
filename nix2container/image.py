"""Image documents: reading them and deriving the OCI config and blobs.

An :class:`~nix2container.types.Image` is usually read with
:func:`new_image_from_file`. Its OCI configuration blob comes from
:func:`get_config_blob`, and a reader on any of its blobs from
:func:`get_blob`.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import re
from typing import Any, BinaryIO

from nix2container.tar import layer_get_blob
from nix2container.types import IMAGE_VERSION, Image, ImageConfig, Layer

logger = logging.getLogger(__name__)

_DIGEST_HEX_LENGTHS = {"sha256": 64, "sha384": 96, "sha512": 128}
_ALGORITHM = re.compile(r"[a-z0-9]+(?:[.+_-][a-z0-9]+)*")
_JSON_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


def _parse_digest(value: str) -> str:
    """Validate a digest of the form ``algorithm:hex`` and return it."""
    algorithm, sep, encoded = value.partition(":")
    if not sep or not algorithm or not encoded:
        raise ValueError(f"invalid checksum digest format: {value!r}")
    if not _ALGORITHM.fullmatch(algorithm):
        raise ValueError(f"invalid checksum digest format: {value!r}")
    length = _DIGEST_HEX_LENGTHS.get(algorithm)
    if length is None:
        raise ValueError(f"unsupported digest algorithm: {value!r}")
    if len(encoded) != length or not re.fullmatch(r"[a-f0-9]+", encoded):
        raise ValueError(f"invalid checksum digest: {value!r}")
    return value


def _encoded(digest: str) -> str:
    """Return the part of a digest after the algorithm."""
    _, sep, encoded = digest.partition(":")
    if not sep:
        raise ValueError(f"invalid checksum digest format: {digest!r}")
    return encoded


def _marshal(value: Any) -> bytes:
    """Serialise compactly, escaping HTML-sensitive characters."""
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    for char, escape in _JSON_ESCAPES:
        text = text.replace(char, escape)
    return text.encode("utf-8")


def _read_json(filename: str) -> Any:
    with open(filename, encoding="utf-8") as handle:
        return json.load(handle)


def get_v1_image(image: Image) -> dict[str, Any]:
    """Return the OCI image configuration document of an image."""
    diff_ids: list[str] = []
    history: list[dict[str, Any]] = []
    rootfs_type = ""
    for layer in image.layers:
        diff_ids.append(_parse_digest(layer.diff_ids))
        rootfs_type = "layers"
        # History is optional in the spec but some tools require it.
        history.append(layer.history.to_dict())

    result: dict[str, Any] = {}
    if image.created is not None:
        result["created"] = _format_created(image)
    result["architecture"] = image.arch
    result["os"] = "linux"
    result["config"] = image.image_config.to_dict()
    result["rootfs"] = {"type": rootfs_type, "diff_ids": diff_ids or None}
    if history:
        result["history"] = history
    return result


def _format_created(image: Image) -> str:
    return image.to_dict()["created"]


def get_config_blob(image: Image) -> bytes:
    """Return the serialised OCI configuration of an image."""
    return _marshal(get_v1_image(image))


def get_config_digest(image: Image) -> tuple[str, int]:
    """Return the digest and size of the configuration blob of an image."""
    blob = get_config_blob(image)
    return "sha256:" + hashlib.sha256(blob).hexdigest(), len(blob)


def get_blob(image: Image, digest: str) -> tuple[BinaryIO | None, int]:
    """Return a reader on the layer or config blob with the given digest."""
    for layer in image.layers:
        if layer.digest == digest:
            return layer_get_blob(layer)
    config_digest, _ = get_config_digest(image)
    if digest == config_digest:
        blob = get_config_blob(image)
        return io.BytesIO(blob), len(blob)
    raise LookupError("No blob with specified digest found in image")


def new_image_from_file(filename: str) -> Image:
    """Read an image document from a JSON file."""
    return Image.from_dict(_read_json(filename))


def _layers_from_manifest(
    manifest: dict[str, Any], diff_ids: list[str], layer_file: Any
) -> list[Layer]:
    layers = []
    for index, descriptor in enumerate(manifest.get("layers") or []):
        digest = descriptor.get("digest", "")
        filename = layer_file(_encoded(digest))
        logger.info("Adding tar file '%s' as image layer", filename)
        if index >= len(diff_ids):
            raise ValueError("mismatch between number of layers and DiffIDs")
        layer = Layer(layer_path=filename, digest=digest, diff_ids=diff_ids[index])
        layer.set_media_type_from_descriptor(descriptor.get("mediaType", ""))
        layers.append(layer)
    return layers


def _diff_ids(config: dict[str, Any]) -> list[str]:
    rootfs = config.get("rootfs") or {}
    return list(rootfs.get("diff_ids") or [])


def new_image_from_dir(directory: str) -> Image:
    """Build an image from a directory written by the Skopeo dir transport.

    Layer tarballs are referenced by path, so the directory should be
    absolute.
    """
    manifest = _read_json(directory + "/manifest.json")
    config_digest = (manifest.get("config") or {}).get("digest", "")
    config_filename = directory + "/" + _encoded(config_digest)
    logger.info("Loading image config from '%s'", config_filename)
    config = _read_json(config_filename)

    image = Image(version=IMAGE_VERSION)
    image.image_config = ImageConfig.from_dict(config.get("config"))
    image.layers = _layers_from_manifest(
        manifest, _diff_ids(config), lambda encoded: directory + "/" + encoded
    )
    return image


def new_image_from_manifest(manifest_filename: str, blob_map_filename: str) -> Image:
    """Build an image from a registry manifest and a map of blob locations."""
    manifest = _read_json(manifest_filename)
    blob_map: dict[str, str] = _read_json(blob_map_filename) or {}

    config_digest = (manifest.get("config") or {}).get("digest", "")
    config = _read_json(blob_map.get(_encoded(config_digest), ""))

    image = Image(version=IMAGE_VERSION)
    image.layers = _layers_from_manifest(
        manifest, _diff_ids(config), lambda encoded: blob_map.get(encoded, "")
    )
    return image


def merge_other_image_config(target: ImageConfig, other: ImageConfig) -> None:
    """Put ``other`` on top of ``target``, in place.

    Scalars and command lines are overwritten when set in ``other``;
    ports, volumes, labels and environment are joined.
    """
    if other.user:
        target.user = other.user
    target.exposed_ports |= other.exposed_ports
    target.env.extend(other.env)
    if other.entrypoint:
        target.entrypoint = list(other.entrypoint)
    if other.cmd:
        target.cmd = list(other.cmd)
    target.volumes |= other.volumes
    if other.working_dir:
        target.working_dir = other.working_dir
    target.labels.update(other.labels)
    if other.stop_signal:
        target.stop_signal = other.stop_signal