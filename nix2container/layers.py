"""Splitting store paths into image layers."""

from __future__ import annotations

import logging
from typing import Iterable, Sequence

from nix2container.tar import tar_paths_sum, tar_paths_write
from nix2container.types import (
    MEDIA_TYPE_IMAGE_LAYER,
    History,
    Layer,
    Path,
    PathOptions,
    Perm,
    PermPath,
    Rewrite,
    RewritePath,
)

logger = logging.getLogger(__name__)


def get_paths(
    store_paths: Iterable[str],
    parents: Sequence[Layer],
    rewrites: Sequence[RewritePath],
    exclude: str,
    perm_paths: Sequence[PermPath],
) -> list[Path]:
    """Build layer paths with their options, skipping excluded and inherited ones."""
    result = []
    for store_path in store_paths:
        options = PathOptions()
        has_options = False
        perms = [
            Perm(regex=p.regex, mode=p.mode, uid=p.uid, gid=p.gid, uname=p.uname, gname=p.gname)
            for p in perm_paths
            if p.path == store_path
        ]
        if perms:
            has_options = True
            options.perms = perms
        for rewrite in rewrites:
            if rewrite.path == store_path:
                has_options = True
                options.rewrite = Rewrite(regex=rewrite.regex, repl=rewrite.repl)
        path = Path(store_path, options if has_options else None)
        if store_path == exclude:
            logger.info("Excluding path %s from layer", store_path)
            continue
        if is_path_in_layers(parents, path):
            logger.info("Excluding path %s because already present in a parent layer", store_path)
            continue
        result.append(path)
    return result


def _new_layers(
    paths: list[Path], tar_directory: str, max_layers: int, history: History
) -> list[Layer]:
    layers = []
    offset = 0
    while offset < len(paths):
        end = len(paths) if offset == max_layers - 1 else offset + 1
        layer_paths = paths[offset:end]
        layer_path = ""
        if tar_directory:
            # The whole remaining list is written, as the reference tool does.
            layer_path, digest, size = tar_paths_write(paths, tar_directory)
        else:
            digest, size = tar_paths_sum(layer_paths)
        logger.info("Adding %d paths to layer (size:%d digest:%s)", len(layer_paths), size, digest)
        layers.append(
            Layer(
                digest=digest,
                diff_ids=digest,
                size=size,
                paths=layer_paths,
                media_type=MEDIA_TYPE_IMAGE_LAYER,
                layer_path=layer_path,
                history=history,
            )
        )
        offset = end
    return layers


def new_layers(
    store_paths: Iterable[str],
    max_layers: int,
    parents: Sequence[Layer],
    rewrites: Sequence[RewritePath],
    exclude: str,
    perms: Sequence[PermPath],
    history: History | None,
) -> list[Layer]:
    """Build reproducible layers; the last layer holds all remaining paths."""
    paths = get_paths(store_paths, parents, rewrites, exclude, perms)
    return _new_layers(paths, "", max_layers, history if history is not None else History())


def new_layers_non_reproducible(
    store_paths: Iterable[str],
    max_layers: int,
    tar_directory: str,
    parents: Sequence[Layer],
    rewrites: Sequence[RewritePath],
    exclude: str,
    perms: Sequence[PermPath],
    history: History | None,
) -> list[Layer]:
    """Build layers whose tarballs are written into ``tar_directory``."""
    paths = get_paths(store_paths, parents, rewrites, exclude, perms)
    return _new_layers(
        paths, tar_directory, max_layers, history if history is not None else History()
    )


def is_path_in_layers(layers: Iterable[Layer], path: Path) -> bool:
    """Tell whether one of the layers already holds an equal path."""
    return any(path == p for layer in layers for p in layer.paths)