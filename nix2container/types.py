"""Data model of the image and layer JSON documents."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

IMAGE_VERSION = 1

MEDIA_TYPE_IMAGE_LAYER = "application/vnd.oci.image.layer.v1.tar"
MEDIA_TYPE_IMAGE_LAYER_GZIP = "application/vnd.oci.image.layer.v1.tar+gzip"
MEDIA_TYPE_IMAGE_LAYER_ZSTD = "application/vnd.oci.image.layer.v1.tar+zstd"

_MEDIA_TYPES = {
    "application/vnd.docker.image.rootfs.diff.tar": MEDIA_TYPE_IMAGE_LAYER,
    "application/vnd.docker.image.rootfs.diff.tar.gzip": MEDIA_TYPE_IMAGE_LAYER_GZIP,
    MEDIA_TYPE_IMAGE_LAYER: MEDIA_TYPE_IMAGE_LAYER,
    MEDIA_TYPE_IMAGE_LAYER_GZIP: MEDIA_TYPE_IMAGE_LAYER_GZIP,
    MEDIA_TYPE_IMAGE_LAYER_ZSTD: MEDIA_TYPE_IMAGE_LAYER_ZSTD,
}

_RFC3339 = re.compile(
    r"(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(\.\d+)?([Zz]|[+-]\d{2}:\d{2})"
)


def parse_time(value: str) -> datetime:
    """Parse an RFC 3339 timestamp into an aware datetime."""
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid RFC 3339 time: {value!r}")
    date, clock, fraction, zone = match.groups()
    microsecond = int((fraction[1:] + "000000")[:6]) if fraction else 0
    if zone in ("Z", "z"):
        tzinfo = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        tzinfo = timezone(sign * timedelta(hours=hours, minutes=minutes))
    parsed = datetime.fromisoformat(f"{date}T{clock}")
    return parsed.replace(microsecond=microsecond, tzinfo=tzinfo)


def format_time(value: datetime) -> str:
    """Format a datetime as RFC 3339 with trailing zero fractions removed."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    if value.microsecond:
        text += "." + f"{value.microsecond:06d}".rstrip("0")
    offset = value.utcoffset() or timedelta(0)
    if offset == timedelta(0):
        return text + "Z"
    sign = "-" if offset < timedelta(0) else "+"
    minutes = abs(int(offset.total_seconds())) // 60
    return f"{text}{sign}{minutes // 60:02d}:{minutes % 60:02d}"


@dataclass
class Rewrite:
    """Replacement of ``regex`` by ``repl`` in tar paths."""

    regex: str = ""
    repl: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Rewrite:
        data = data or {}
        return cls(regex=data.get("regex", ""), repl=data.get("repl", ""))

    def to_dict(self) -> dict[str, Any]:
        return {"regex": self.regex, "repl": self.repl}


@dataclass
class RewritePath:
    """A rewrite applied to the files of one store path."""

    path: str = ""
    regex: str = ""
    repl: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RewritePath:
        return cls(
            path=data.get("path", ""),
            regex=data.get("regex", ""),
            repl=data.get("repl", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "regex": self.regex, "repl": self.repl}


@dataclass
class Perm:
    """Ownership and mode applied to files matching ``regex``; mode is octal."""

    regex: str = ""
    mode: str = ""
    uid: int = 0
    gid: int = 0
    uname: str = ""
    gname: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Perm:
        return cls(
            regex=data.get("regex", ""),
            mode=data.get("mode", ""),
            uid=int(data.get("uid", 0)),
            gid=int(data.get("gid", 0)),
            uname=data.get("uname", ""),
            gname=data.get("gname", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "regex": self.regex,
            "mode": self.mode,
            "uid": self.uid,
            "gid": self.gid,
            "uname": self.uname,
            "gname": self.gname,
        }


@dataclass
class PermPath:
    """A permission rule attached to one store path."""

    path: str = ""
    regex: str = ""
    mode: str = ""
    uid: int = 0
    gid: int = 0
    uname: str = ""
    gname: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PermPath:
        return cls(
            path=data.get("path", ""),
            regex=data.get("regex", ""),
            mode=data.get("mode", ""),
            uid=int(data.get("uid", 0)),
            gid=int(data.get("gid", 0)),
            uname=data.get("uname", ""),
            gname=data.get("gname", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "regex": self.regex,
            "mode": self.mode,
            "uid": self.uid,
            "gid": self.gid,
            "uname": self.uname,
            "gname": self.gname,
        }


@dataclass
class PathOptions:
    """Rewrite and permission options of a store path."""

    rewrite: Rewrite = field(default_factory=Rewrite)
    perms: list[Perm] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> PathOptions:
        data = data or {}
        return cls(
            rewrite=Rewrite.from_dict(data.get("rewrite")),
            perms=[Perm.from_dict(p) for p in data.get("perms") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"rewrite": self.rewrite.to_dict()}
        if self.perms:
            result["perms"] = [p.to_dict() for p in self.perms]
        return result


@dataclass
class Path:
    """A store path put into a layer, with optional options."""

    path: str
    options: PathOptions | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Path:
        options = data.get("options")
        return cls(
            path=data.get("path", ""),
            options=PathOptions.from_dict(options) if options is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"path": self.path}
        if self.options is not None:
            result["options"] = self.options.to_dict()
        return result


@dataclass
class History:
    """An OCI history entry."""

    created: datetime | None = None
    created_by: str = ""
    author: str = ""
    comment: str = ""
    empty_layer: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> History:
        data = data or {}
        created = data.get("created")
        return cls(
            created=parse_time(created) if created else None,
            created_by=data.get("created_by", ""),
            author=data.get("author", ""),
            comment=data.get("comment", ""),
            empty_layer=bool(data.get("empty_layer", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.created is not None:
            result["created"] = format_time(self.created)
        if self.created_by:
            result["created_by"] = self.created_by
        if self.author:
            result["author"] = self.author
        if self.comment:
            result["comment"] = self.comment
        if self.empty_layer:
            result["empty_layer"] = True
        return result


@dataclass
class ImageConfig:
    """The execution parameters of an OCI image."""

    user: str = ""
    exposed_ports: set[str] = field(default_factory=set)
    env: list[str] = field(default_factory=list)
    entrypoint: list[str] = field(default_factory=list)
    cmd: list[str] = field(default_factory=list)
    volumes: set[str] = field(default_factory=set)
    working_dir: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    stop_signal: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ImageConfig:
        data = data or {}
        return cls(
            user=data.get("User", ""),
            exposed_ports=set(data.get("ExposedPorts") or {}),
            env=list(data.get("Env") or []),
            entrypoint=list(data.get("Entrypoint") or []),
            cmd=list(data.get("Cmd") or []),
            volumes=set(data.get("Volumes") or {}),
            working_dir=data.get("WorkingDir", ""),
            labels=dict(data.get("Labels") or {}),
            stop_signal=data.get("StopSignal", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        if self.user:
            result["User"] = self.user
        if self.exposed_ports:
            result["ExposedPorts"] = {k: {} for k in sorted(self.exposed_ports)}
        if self.env:
            result["Env"] = list(self.env)
        if self.entrypoint:
            result["Entrypoint"] = list(self.entrypoint)
        if self.cmd:
            result["Cmd"] = list(self.cmd)
        if self.volumes:
            result["Volumes"] = {k: {} for k in sorted(self.volumes)}
        if self.working_dir:
            result["WorkingDir"] = self.working_dir
        if self.labels:
            result["Labels"] = {k: self.labels[k] for k in sorted(self.labels)}
        if self.stop_signal:
            result["StopSignal"] = self.stop_signal
        return result


@dataclass
class Layer:
    """A layer of an image: either store paths to tar or a tarball on disk."""

    digest: str = ""
    size: int = 0
    diff_ids: str = ""
    paths: list[Path] = field(default_factory=list)
    media_type: str = ""
    layer_path: str = ""
    history: History = field(default_factory=History)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Layer:
        history = data.get("History", data.get("history"))
        return cls(
            digest=data.get("digest", ""),
            size=int(data.get("size", 0)),
            diff_ids=data.get("diff_ids", ""),
            paths=[Path.from_dict(p) for p in data.get("paths") or []],
            media_type=data.get("mediatype", ""),
            layer_path=data.get("layer-path", ""),
            history=History.from_dict(history),
        )

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "digest": self.digest,
            "size": self.size,
            "diff_ids": self.diff_ids,
        }
        if self.paths:
            result["paths"] = [p.to_dict() for p in self.paths]
        result["mediatype"] = self.media_type
        if self.layer_path:
            result["layer-path"] = self.layer_path
        result["History"] = self.history.to_dict()
        return result

    def set_media_type_from_descriptor(self, media_type: str) -> None:
        """Set the OCI media type from a descriptor's (Docker or OCI) media type."""
        try:
            self.media_type = _MEDIA_TYPES[media_type]
        except KeyError:
            raise ValueError(f'Unsupported media type: "{media_type}"') from None


@dataclass
class Image:
    """The image document consumed to build a container image."""

    version: int = IMAGE_VERSION
    image_config: ImageConfig = field(default_factory=ImageConfig)
    layers: list[Layer] = field(default_factory=list)
    arch: str = ""
    created: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Image:
        created = data.get("created")
        return cls(
            version=int(data.get("version", 0)),
            image_config=ImageConfig.from_dict(data.get("image-config")),
            layers=[Layer.from_dict(layer) for layer in data.get("layers") or []],
            arch=data.get("arch", ""),
            created=parse_time(created) if created else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "image-config": self.image_config.to_dict(),
            "layers": [layer.to_dict() for layer in self.layers],
            "arch": self.arch,
            "created": format_time(self.created) if self.created is not None else None,
        }


def new_layers_from_file(filename: str) -> list[Layer]:
    """Read a JSON list of layers from a file."""
    with open(filename, encoding="utf-8") as handle:
        data = json.load(handle)
    return [Layer.from_dict(item) for item in data or []]