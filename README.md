# nix2container

Describe container images built from Nix store paths as JSON files, without
copying the store paths into an intermediate archive. An image file lists the
image configuration and its layers; a layer lists the store paths it holds,
and its tar stream is generated on demand, reproducibly, from those paths.

The package needs nothing beyond the standard library.

## Installation

```
pip install .
```

Tests run with `pip install .[test]` and `pytest`.

## Command line

The `nix2container` command logs progress at INFO level on standard error;
`-d`/`--debug` (placed before the sub-command) enables debug logs. On failure
the error is printed to standard error and the exit status is 1.

### Layers

Split a closure graph into layers, most popular store paths first:

```
nix2container layers-from-reproducible-storepaths layers.json closure-graph.json [PARENT-LAYERS.json ...]
```

The closure graph is a JSON list of `{"path": ..., "references": [...]}`
objects. Store paths already present in one of the parent layer files are
skipped.

Options:

- `--max-layers N`: maximum number of layers (default 1). Each layer but the
  last holds one store path; the last holds all remaining paths.
- `--ignore PATH`: leave a store path out.
- `--rewrites FILE`: JSON list of `{"path", "regex", "repl"}` objects. For the
  files of the given store path, matches of `regex` in the file name are
  replaced by `repl` (which may use `$1`, `${name}` and `$$`). A file
  renamed to the empty string is left out.
- `--perms FILE`: JSON list of `{"path", "regex", "mode", "uid", "gid",
  "uname", "gname"}` objects. For files of the given store path matching
  `regex`, ownership is set and, when given, the octal `mode`.
- `--history FILE`: JSON OCI history entry attached to every layer.

For store paths whose content is not reproducible, the tar archives are
written to disk instead, named `<sha256 hex>.tar`:

```
nix2container layers-from-non-reproducible-storepaths layers.json closure-graph.json --tar-directory /tmp/layers
```

It takes the same options as the reproducible command, plus
`--tar-directory`. Each archive written holds every path selected for
layering, not only those of its own layer.

### Images

Assemble an image file from a configuration and one or more layer files:

```
nix2container image image.json config.json layers-1.json layers-2.json
```

Options:

- `--arch`: target architecture (defaults to the running machine's, e.g.
  `amd64`, `arm64`).
- `--created`: RFC 3339 creation timestamp (defaults to `0001-01-01T00:00:00Z`).
- `--from-image FILE`: an image file whose layers come first.
- `--from-image-inherit-config`: start from the base image's configuration
  and put the given one on top of it: user, entrypoint, command, working
  directory and stop signal are overwritten when set; ports, volumes, labels
  and environment are joined.

Import an existing image:

```
nix2container image-from-dir image.json /absolute/path/to/skopeo-dir
nix2container image-from-manifest image.json manifest.json blobs.json
```

`image-from-dir` reads a directory written by Skopeo's `dir` transport and
refers to its layer tarballs by path, so the directory should be absolute.
`image-from-manifest` reads a registry manifest and a JSON object mapping
each blob's hex digest to the file holding it; it imports the layers but not
the image configuration.

## Library use

```python
from nix2container.layers import new_layers
from nix2container.image import get_blob, get_config_digest, new_image_from_file

layers = new_layers(["/nix/store/...-hello"], 1, [], [], "", [], None)
image = new_image_from_file("image.json")
digest, size = get_config_digest(image)
reader, _ = get_blob(image, image.layers[0].digest)
```

Modules:

- `nix2container.types`: the data classes (`Image`, `Layer`, `Path`,
  `PathOptions`, `Perm`, `PermPath`, `Rewrite`, `RewritePath`, `History`,
  `ImageConfig`), each with `from_dict` and `to_dict`, and
  `new_layers_from_file`.
- `nix2container.closure`: `read_closure_graph_file`, `score` and
  `sorted_paths_by_popularity`.
- `nix2container.layers`: `new_layers`, `new_layers_non_reproducible`,
  `get_paths`, `is_path_in_layers`.
- `nix2container.tar`: `tar_paths` (a readable file holding the archive),
  `tar_paths_sum` (digest and size), `tar_paths_write` and `layer_get_blob`.
  Archives are deterministic: entries sorted by name, owned by root, with
  fixed timestamps.
- `nix2container.image`: `get_v1_image`, `get_config_blob`,
  `get_config_digest`, `get_blob`, `new_image_from_file`,
  `new_image_from_dir`, `new_image_from_manifest`, `merge_other_image_config`.
- `nix2container.graph` and `nix2container.paths`: the file tree and path
  helpers used while building tar streams.

## What it does not do

The package only writes JSON descriptions and produces layer tar streams. It
does not push images to a registry, copy them between storage locations, or
write a complete image archive; another tool has to read the image file and
assemble the image from it.