"""Translate storage paths into URLs reachable by the requesting client."""

from __future__ import annotations

from pathlib import Path, PurePath
from typing import Union


PathLike = Union[str, PurePath]


def to_public_url(internal_path: PathLike, storage_root: PathLike, origin: str) -> str:
    """Return the URL under which *internal_path* is served for *origin*.

    ``origin`` is the scheme and host of the current request (for example
    ``https://slides.example.org``). Raises :class:`ValueError` when the path
    does not live below ``storage_root``.
    """

    root_text = str(storage_root).replace("\\", "/").rstrip("/")
    path_text = str(internal_path).replace("\\", "/")
    if root_text:
        if path_text != root_text and not path_text.startswith(root_text + "/"):
            raise ValueError(f"'{internal_path}' is not inside '{storage_root}'")
        path_text = path_text[len(root_text):]
    relative = "/" + path_text.lstrip("/")
    return origin.rstrip("/") + relative


def storage_public_url(path: Path, storage_root: Path, origin: str) -> str:
    """Variant of :func:`to_public_url` for resolved filesystem paths."""

    return to_public_url(path.resolve(), storage_root.resolve(), origin)


__all__ = ["storage_public_url", "to_public_url"]
