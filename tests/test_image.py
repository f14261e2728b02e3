import hashlib
import json
from datetime import datetime, timezone

import pytest

from nix2container.image import (
    get_blob,
    get_config_blob,
    get_config_digest,
    get_v1_image,
    merge_other_image_config,
    new_image_from_dir,
    new_image_from_file,
    new_image_from_manifest,
)
from nix2container.types import History, Image, ImageConfig, Layer

LAYER_DIGEST = "sha256:59bf1c3509f33515622619af21ed55bbe26d24913cedbca106468a5fb37a50c3"
DIFF_ID = "sha256:8d3ac3489996423f53d6087c81180006263b79f206d3fdec9e66f0e27ceb8759"
CONFIG_HEX = "a" * 64
ADF = "sha256:adf74a52f9e1bcd7dab77193455fa06743b979cf5955148010e5becedba4f72d"


def _manifest(media_type="application/vnd.oci.image.layer.v1.tar+gzip"):
    return {
        "schemaVersion": 2,
        "config": {
            "mediaType": "application/vnd.oci.image.config.v1+json",
            "digest": "sha256:" + CONFIG_HEX,
            "size": 10,
        },
        "layers": [{"mediaType": media_type, "digest": LAYER_DIGEST, "size": 20}],
    }


def _config(diff_ids=(DIFF_ID,)):
    return {
        "architecture": "amd64",
        "os": "linux",
        "config": {"Env": ["PATH=/bin"], "User": "nobody"},
        "rootfs": {"type": "layers", "diff_ids": list(diff_ids)},
    }


@pytest.fixture
def image_directory(tmp_path):
    (tmp_path / "manifest.json").write_text(json.dumps(_manifest()))
    (tmp_path / CONFIG_HEX).write_text(json.dumps(_config()))
    return tmp_path


def test_new_image_from_dir(image_directory):
    image = new_image_from_dir(str(image_directory))
    expected = [
        Layer(
            digest=LAYER_DIGEST,
            diff_ids=DIFF_ID,
            media_type="application/vnd.oci.image.layer.v1.tar+gzip",
            layer_path=str(image_directory) + "/" + LAYER_DIGEST.split(":")[1],
        )
    ]
    assert image.layers == expected
    assert image.version == 1
    assert image.image_config.env == ["PATH=/bin"]
    assert image.image_config.user == "nobody"


def test_new_image_from_dir_mismatch(tmp_path):
    (tmp_path / "manifest.json").write_text(json.dumps(_manifest()))
    (tmp_path / CONFIG_HEX).write_text(json.dumps(_config(diff_ids=())))
    with pytest.raises(ValueError, match="mismatch"):
        new_image_from_dir(str(tmp_path))


def test_new_image_from_dir_unsupported_media_type(tmp_path):
    (tmp_path / "manifest.json").write_text(json.dumps(_manifest("text/plain")))
    (tmp_path / CONFIG_HEX).write_text(json.dumps(_config()))
    with pytest.raises(ValueError, match="Unsupported media type"):
        new_image_from_dir(str(tmp_path))


def test_new_image_from_manifest(tmp_path):
    manifest = tmp_path / "manifest.json"
    manifest.write_text(json.dumps(_manifest("application/vnd.docker.image.rootfs.diff.tar")))
    config = tmp_path / "config.json"
    config.write_text(json.dumps(_config()))
    blobs = tmp_path / "blobs.json"
    blobs.write_text(
        json.dumps({CONFIG_HEX: str(config), LAYER_DIGEST.split(":")[1]: "/blobs/layer.tar"})
    )
    image = new_image_from_manifest(str(manifest), str(blobs))
    assert image.layers == [
        Layer(
            digest=LAYER_DIGEST,
            diff_ids=DIFF_ID,
            media_type="application/vnd.oci.image.layer.v1.tar",
            layer_path="/blobs/layer.tar",
        )
    ]


def test_new_image_from_manifest_missing_config(tmp_path):
    manifest = tmp_path / "manifest.json"
    manifest.write_text(json.dumps(_manifest()))
    blobs = tmp_path / "blobs.json"
    blobs.write_text("{}")
    with pytest.raises(FileNotFoundError):
        new_image_from_manifest(str(manifest), str(blobs))


def test_get_v1_image():
    image = Image(
        layers=[
            Layer(
                digest=ADF,
                diff_ids=ADF,
                size=10,
                media_type="application/vnd.oci.image.layer.v1.tar",
                history=History(created_by="nix2container"),
            )
        ]
    )
    assert get_v1_image(image) == {
        "architecture": "",
        "os": "linux",
        "config": {},
        "rootfs": {"type": "layers", "diff_ids": [ADF]},
        "history": [{"created_by": "nix2container"}],
    }


def test_get_v1_image_invalid_diff_id():
    image = Image(layers=[Layer(diff_ids="sha256:xyz")])
    with pytest.raises(ValueError):
        get_v1_image(image)


def test_get_v1_image_created():
    image = Image(created=datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc), arch="arm64")
    result = get_v1_image(image)
    assert result["created"] == "2020-01-02T03:04:05Z"
    assert result["architecture"] == "arm64"


def test_get_config_blob_empty_image():
    assert get_config_blob(Image()) == (
        b'{"architecture":"","os":"linux","config":{},'
        b'"rootfs":{"type":"","diff_ids":null}}'
    )


def test_get_config_digest_matches_blob():
    image = Image(image_config=ImageConfig(cmd=["/bin/sh"]))
    digest, size = get_config_digest(image)
    blob = get_config_blob(image)
    assert size == len(blob)
    assert digest == "sha256:" + hashlib.sha256(blob).hexdigest()


def test_get_blob_config():
    image = Image(image_config=ImageConfig(user="root"))
    digest, size = get_config_digest(image)
    reader, blob_size = get_blob(image, digest)
    assert blob_size == size
    assert reader.read() == get_config_blob(image)


def test_get_blob_layer_path(tmp_path):
    tarball = tmp_path / "layer.tar"
    tarball.write_bytes(b"layer-content")
    image = Image(layers=[Layer(digest=ADF, diff_ids=ADF, layer_path=str(tarball))])
    reader, _ = get_blob(image, ADF)
    with reader:
        assert reader.read() == b"layer-content"


def test_get_blob_unknown_digest():
    with pytest.raises(LookupError, match="No blob"):
        get_blob(Image(), "sha256:" + "0" * 64)


def test_new_image_from_file_round_trip(tmp_path):
    image = Image(
        image_config=ImageConfig(env=["A=1"], labels={"k": "v"}),
        layers=[Layer(digest=ADF, diff_ids=ADF, size=3, media_type="m")],
        arch="amd64",
        created=datetime(1970, 1, 1, tzinfo=timezone.utc),
    )
    path = tmp_path / "image.json"
    path.write_text(json.dumps(image.to_dict()))
    assert new_image_from_file(str(path)) == image


def test_merge_other_image_config_overwrites_and_joins():
    target = ImageConfig(
        user="root",
        exposed_ports={"80/tcp"},
        env=["A=1"],
        entrypoint=["/old"],
        cmd=["old"],
        volumes={"/data"},
        working_dir="/",
        labels={"a": "1", "b": "2"},
        stop_signal="SIGTERM",
    )
    other = ImageConfig(
        user="nobody",
        exposed_ports={"443/tcp"},
        env=["B=2"],
        entrypoint=["/new"],
        cmd=["new"],
        volumes={"/cache"},
        working_dir="/app",
        labels={"b": "3"},
        stop_signal="SIGINT",
    )
    merge_other_image_config(target, other)
    assert target == ImageConfig(
        user="nobody",
        exposed_ports={"80/tcp", "443/tcp"},
        env=["A=1", "B=2"],
        entrypoint=["/new"],
        cmd=["new"],
        volumes={"/data", "/cache"},
        working_dir="/app",
        labels={"a": "1", "b": "3"},
        stop_signal="SIGTERM" if False else "SIGINT",
    )


def test_merge_other_image_config_empty_other_keeps_target():
    target = ImageConfig(user="root", cmd=["run"], working_dir="/w", env=["A=1"])
    merge_other_image_config(target, ImageConfig())
    assert target == ImageConfig(user="root", cmd=["run"], working_dir="/w", env=["A=1"])