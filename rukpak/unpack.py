"""Pack a bundle directory into a gzipped tar archive and print it as JSON.

The printed document is ``{"content": "<base64 of the .tar.gz>"}``.
"""

from __future__ import annotations

import argparse
import base64
import gzip
import io
import json
import os
import sys
import tarfile
from importlib.metadata import PackageNotFoundError, version
from typing import Iterator, Optional, Sequence

# Known directories unrelated to a bundle when it lives at the filesystem root.
SKIP_ROOT_PATHS = frozenset(
    {"/dev", "/etc", "/proc", "/product_name", "/product_uuid", "/sys", "/bin"}
)


def _version_string() -> str:
    try:
        return version("rukpak")
    except PackageNotFoundError:
        return "unknown"


def _walk(bundle_dir: str, rel: str = ".") -> Iterator[tuple[str, str]]:
    """Yield ``(relative, absolute)`` paths in lexical order, skipping symlinks."""
    full = bundle_dir if rel == "." else os.path.join(bundle_dir, rel)
    if os.path.islink(full):
        return
    if bundle_dir == "/" and full in SKIP_ROOT_PATHS:
        return
    yield rel, full
    if os.path.isdir(full):
        for name in sorted(os.listdir(full)):
            child = name if rel == "." else f"{rel}/{name}"
            yield from _walk(bundle_dir, child)


def build_bundle_archive(bundle_dir: str) -> bytes:
    """Return a gzipped tar of ``bundle_dir`` with ownership cleared."""
    os.lstat(bundle_dir)
    buffer = io.BytesIO()
    with gzip.GzipFile(fileobj=buffer, mode="wb", mtime=0) as gz:
        with tarfile.open(fileobj=gz, mode="w", format=tarfile.PAX_FORMAT) as tar:
            for rel, full in _walk(bundle_dir):
                info = tar.gettarinfo(full, arcname=rel)
                if info is None:
                    raise OSError(f"build tar file info header for {json.dumps(rel)}: unsupported file type")
                info.uid = 0
                info.gid = 0
                info.uname = ""
                info.gname = ""
                if info.isreg():
                    with open(full, "rb") as handle:
                        tar.addfile(info, handle)
                else:
                    tar.addfile(info)
    return buffer.getvalue()


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="unpack")
    parser.add_argument("--bundle-dir", default="", help="directory in which the bundle can be found")
    parser.add_argument("--version", action="store_true", help="displays rukpak version information")
    args = parser.parse_args(argv)

    if args.version:
        print(_version_string())
        return 0

    bundle_dir = os.path.abspath(args.bundle_dir)
    try:
        content = build_bundle_archive(bundle_dir)
    except OSError as err:
        print(f"generate tar.gz for bundle dir {json.dumps(bundle_dir)}: {err}", file=sys.stderr)
        return 1

    document = {"content": base64.b64encode(content).decode("ascii")}
    sys.stdout.write(json.dumps(document) + "\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())