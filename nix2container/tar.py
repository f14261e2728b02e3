"""Deterministic tar streams of store paths."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import stat
import tarfile
import tempfile
from typing import IO, BinaryIO, Iterable

from nix2container.graph import add_file_to_graph, init_graph, walk_graph
from nix2container.types import Layer, Path, PathOptions

logger = logging.getLogger(__name__)

_BLOCK = tarfile.BLOCKSIZE
_MTIME = 1
_SPOOL_SIZE = 16 * 1024 * 1024


class _Digester:
    """A write-only sink hashing everything written to it, optionally teeing."""

    def __init__(self, tee: IO[bytes] | None = None) -> None:
        self._hash = hashlib.sha256()
        self._tee = tee
        self.size = 0

    def write(self, data: bytes) -> int:
        self._hash.update(data)
        self.size += len(data)
        if self._tee is not None:
            self._tee.write(data)
        return len(data)

    @property
    def digest(self) -> str:
        return "sha256:" + self._hash.hexdigest()


def _walk_fs(top: str) -> Iterable[tuple[str, os.stat_result]]:
    """Yield ``(path, lstat)`` for ``top`` and everything below it, in lexical order."""
    try:
        info = os.lstat(top)
    except OSError as exc:
        raise OSError(f'Failed accessing path "{top}": {exc}') from exc
    yield top, info
    if stat.S_ISDIR(info.st_mode):
        try:
            names = sorted(os.listdir(top))
        except OSError as exc:
            raise OSError(f'Failed accessing path "{top}": {exc}') from exc
        for name in names:
            yield from _walk_fs(os.path.join(top, name))


def _write_header(out: IO[bytes], info: tarfile.TarInfo) -> None:
    out.write(info.tobuf(tarfile.PAX_FORMAT, "utf-8", "surrogateescape"))


def _directory_header(dst_path: str) -> tarfile.TarInfo:
    info = tarfile.TarInfo(dst_path)
    info.type = tarfile.DIRTYPE
    info.mode = 0o755
    info.uid = info.gid = 0
    info.uname = info.gname = "root"
    info.mtime = _MTIME
    return info


def _file_header(
    src_path: str, dst_path: str, st: os.stat_result, options: PathOptions | None
) -> tarfile.TarInfo:
    info = tarfile.TarInfo(dst_path)
    mode = st.st_mode
    info.mode = stat.S_IMODE(mode)
    if stat.S_ISREG(mode):
        info.type = tarfile.REGTYPE
        info.size = st.st_size
    elif stat.S_ISDIR(mode):
        info.type = tarfile.DIRTYPE
    elif stat.S_ISLNK(mode):
        info.type = tarfile.SYMTYPE
        info.linkname = os.readlink(src_path)
    elif stat.S_ISCHR(mode) or stat.S_ISBLK(mode):
        info.type = tarfile.CHRTYPE if stat.S_ISCHR(mode) else tarfile.BLKTYPE
        info.devmajor = os.major(st.st_rdev)
        info.devminor = os.minor(st.st_rdev)
    elif stat.S_ISFIFO(mode):
        info.type = tarfile.FIFOTYPE
    else:
        raise ValueError(f"archive/tar: unknown file mode {stat.filemode(mode)}")

    info.uid = info.gid = 0
    info.uname = info.gname = "root"
    # Symlink permissions are forced to match Linux ones.
    if info.linkname:
        info.mode = 0o777

    if options is not None:
        for perm in options.perms:
            if re.search(perm.regex, src_path):
                info.uid = perm.uid
                info.gid = perm.gid
                if perm.uname:
                    info.uname = perm.uname
                if perm.gname:
                    info.gname = perm.gname
                if perm.mode:
                    info.mode = int(perm.mode, 8)
    info.mtime = _MTIME
    return info


def _write_tar(paths: Iterable[Path], out: IO[bytes]) -> None:
    graph = init_graph()
    for path in paths:
        for file_path, st in _walk_fs(path.path):
            logger.debug("Walking filesystem: %s", file_path)
            add_file_to_graph(graph, file_path, st, path.options)

    def emit(
        src_path: str,
        dst_path: str,
        st: os.stat_result | None,
        options: PathOptions | None,
    ) -> None:
        if st is None:
            _write_header(out, _directory_header(dst_path))
            return
        info = _file_header(src_path, dst_path, st, options)
        _write_header(out, info)
        if info.type == tarfile.REGTYPE:
            try:
                handle = open(src_path, "rb")
            except OSError as exc:
                raise OSError(f"Could not open file '{src_path}', got error '{exc}'") from exc
            with handle:
                shutil.copyfileobj(handle, out)
            remainder = info.size % _BLOCK
            if remainder:
                out.write(b"\0" * (_BLOCK - remainder))

    walk_graph(graph, emit)
    out.write(b"\0" * (2 * _BLOCK))


def tar_paths(paths: Iterable[Path]) -> BinaryIO:
    """Return a readable binary file holding the tar archive of the paths."""
    spool = tempfile.SpooledTemporaryFile(max_size=_SPOOL_SIZE)
    try:
        _write_tar(paths, spool)
    except BaseException:
        spool.close()
        raise
    spool.seek(0)
    return spool  # type: ignore[return-value]


def tar_paths_sum(paths: Iterable[Path]) -> tuple[str, int]:
    """Return the digest and size of the tar archive of the paths."""
    digester = _Digester()
    _write_tar(paths, digester)
    return digester.digest, digester.size


def tar_paths_write(paths: Iterable[Path], destination_directory: str) -> tuple[str, str, int]:
    """Write the tar archive into a directory, named by its digest.

    Returns the file name, the digest and the size.
    """
    fd, temp_name = tempfile.mkstemp(dir=destination_directory)
    try:
        with os.fdopen(fd, "wb") as handle:
            digester = _Digester(tee=handle)
            _write_tar(paths, digester)
        digest = digester.digest
        filename = destination_directory + "/" + digest.split(":", 1)[1] + ".tar"
        os.replace(temp_name, filename)
    except BaseException:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise
    return filename, digest, digester.size


def layer_get_blob(layer: Layer) -> tuple[BinaryIO | None, int]:
    """Return a reader on the layer's tarball and a size.

    The size is only known (and returned) when the layer has neither a
    tarball on disk nor paths; otherwise it is 0.
    """
    if layer.layer_path:
        return open(layer.layer_path, "rb"), 0
    if layer.paths:
        return tar_paths(layer.paths), 0
    return None, layer.size