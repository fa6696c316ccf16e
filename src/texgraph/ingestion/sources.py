"""
Document source: collect .tex files from a single file, a directory or a zip.
"""

import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path

from ..latex.chunker import SourceFile

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".svg", ".pdf", ".eps"}


@dataclass
class SourceBundle:
    files: list[SourceFile] = field(default_factory=list)
    assets: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _decode(data: bytes, name: str, warnings: list[str]) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        warnings.append(f"{name}: not valid UTF-8, decoded as latin-1")
        return data.decode("latin-1")


def _is_hidden(parts) -> bool:
    return any(p.startswith(".") or p == "__MACOSX" for p in parts)


def _read_zip(path: Path, bundle: SourceBundle) -> None:
    try:
        archive = zipfile.ZipFile(path)
    except zipfile.BadZipFile as e:
        raise ValueError(f"Cannot read zip archive {path}: {e}")

    with archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            name = info.filename
            if _is_hidden(Path(name).parts):
                continue
            suffix = Path(name).suffix.lower()
            if suffix == ".tex":
                content = _decode(archive.read(info), name, bundle.warnings)
                bundle.files.append(SourceFile(path=name, content=content))
            elif suffix in IMAGE_EXTENSIONS:
                bundle.assets.append(name)


def _read_directory(root: Path, bundle: SourceBundle) -> None:
    for file_path in sorted(root.rglob("*")):
        if not file_path.is_file():
            continue
        rel = file_path.relative_to(root)
        if _is_hidden(rel.parts):
            continue
        suffix = file_path.suffix.lower()
        if suffix == ".tex":
            content = _decode(file_path.read_bytes(), rel.as_posix(), bundle.warnings)
            bundle.files.append(SourceFile(path=rel.as_posix(), content=content))
        elif suffix in IMAGE_EXTENSIONS:
            bundle.assets.append(rel.as_posix())


def read_tex_sources(path) -> SourceBundle:
    """
    Read LaTeX sources from a .tex file, a directory tree or a .zip archive.

    Args:
        path: File, directory or zip path

    Returns:
        SourceBundle with .tex files (sorted by path), image asset names and warnings

    Raises:
        ValueError: If the path does not exist or holds no .tex file
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"No such file or directory: {path}")

    bundle = SourceBundle()
    if path.is_dir():
        _read_directory(path, bundle)
    elif path.suffix.lower() == ".zip":
        _read_zip(path, bundle)
    elif path.suffix.lower() == ".tex":
        content = _decode(path.read_bytes(), path.name, bundle.warnings)
        bundle.files.append(SourceFile(path=path.name, content=content))
    else:
        raise ValueError(f"Unsupported input (expected .tex, .zip or a directory): {path}")

    if not bundle.files:
        raise ValueError(f"No .tex files found in {path}")

    bundle.files.sort(key=lambda f: f.path)
    logger.info(f"Read {len(bundle.files)} .tex file(s) and {len(bundle.assets)} asset(s) from {path}")
    return bundle
