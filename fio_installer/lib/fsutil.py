from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional

from ..errors import FilesystemError

logger = logging.getLogger(__name__)


def replace_tree(src: Path, dst: Path) -> None:
    """Replace ``dst`` wholesale with a copy of ``src`` (prior contents removed first)."""

    s = Path(src)
    d = Path(dst)
    if not s.is_dir():
        raise FilesystemError(f"Source tree missing: {s}")
    try:
        if d.is_symlink() or d.is_file():
            d.unlink()
        elif d.exists():
            shutil.rmtree(d)
        d.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(s, d, symlinks=True)
    except OSError as e:
        raise FilesystemError(f"Could not replace {d}: {e}") from e
    logger.info("Replaced tree %s <- %s", d, s)


def strip_group_other_write(root: Path) -> None:
    """chmod -R go-w"""

    def _fix(p: Path) -> None:
        if p.is_symlink():
            return
        mode = p.stat().st_mode
        os.chmod(p, mode & ~(stat.S_IWGRP | stat.S_IWOTH))

    root = Path(root)
    _fix(root)
    for p in root.rglob("*"):
        _fix(p)


def atomic_write_text(path: Path, content: str, *, mode: Optional[int] = None) -> None:
    """Write-then-rename so readers never see a half-written file."""

    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    if mode is None:
        mode = stat.S_IMODE(p.stat().st_mode) if p.exists() else 0o600
    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=str(p.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, p)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise FilesystemError(f"Could not write {p}: {e}") from e


def atomic_copy(src: Path, dst: Path, *, mode: int) -> None:
    s = Path(src)
    d = Path(dst)
    if not s.is_file():
        raise FilesystemError(f"Missing file: {s}")
    d.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{d.name}.", suffix=".tmp", dir=str(d.parent))
    os.close(fd)
    try:
        shutil.copyfile(s, tmp)
        os.chmod(tmp, mode)
        os.replace(tmp, d)
    except OSError as e:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise FilesystemError(f"Could not install {d}: {e}") from e


def backup_file(path: Path, *, clock: Callable[[], float] = time.time) -> Optional[Path]:
    """Copy ``path`` to ``<path>.bak-YYYYmmdd-HHMMSS``. Never overwrites an older backup."""

    p = Path(path)
    if not p.is_file():
        return None
    ts = time.strftime("%Y%m%d-%H%M%S", time.localtime(clock()))
    bak = p.with_name(f"{p.name}.bak-{ts}")
    n = 1
    while bak.exists():
        bak = p.with_name(f"{p.name}.bak-{ts}-{n}")
        n += 1
    try:
        shutil.copy2(p, bak)
    except OSError as e:
        raise FilesystemError(f"Could not back up {p}: {e}") from e
    logger.info("Backup created: %s", bak)
    return bak
