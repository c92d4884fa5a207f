from __future__ import annotations

import hashlib
import logging
import os
import re
import shutil
import tarfile
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import httpx

from ..errors import ChecksumMismatchError, DownloadError, FilesystemError, ResolutionError
from .command import CommandFailed, run_cmd
from .fsutil import atomic_copy, replace_tree, strip_group_other_write

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
GITHUB_DOWNLOAD = "https://github.com"

BINARY_NAME = "fiochat"
ALIAS_NAME = "fio"
# Where the executable may sit inside an extracted release tree.
BINARY_CANDIDATES = ("bin/fiochat", "fiochat")

_SHA256_RE = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class ReleaseArtifact:
    repo: str
    tag: str
    platform: str

    def __post_init__(self) -> None:
        if not self.tag or self.tag == "latest":
            raise ResolutionError("Release tag must be resolved before building an artifact")

    @property
    def archive_name(self) -> str:
        return f"fiochat-{self.tag}-{self.platform}.tar.gz"

    @property
    def archive_url(self) -> str:
        return f"{GITHUB_DOWNLOAD}/{self.repo}/releases/download/{self.tag}/{self.archive_name}"

    @property
    def checksum_url(self) -> str:
        return f"{self.archive_url}.sha256"


@dataclass(frozen=True)
class AliasResult:
    installed: bool
    warning: str = ""


@dataclass(frozen=True)
class ReleaseInstall:
    artifact: ReleaseArtifact
    root: Path
    binary: Path
    alias: AliasResult


def resolve_tag(repo: str, requested: Optional[str], *, client: httpx.Client) -> str:
    """Explicit tags pass through; ``latest``/empty asks GitHub for the newest release."""

    wanted = (requested or "").strip()
    if wanted and wanted != "latest":
        return wanted

    api_url = f"{GITHUB_API}/repos/{repo}/releases/latest"
    try:
        r = client.get(api_url, headers={"Accept": "application/vnd.github+json"})
        r.raise_for_status()
        tag = str((r.json() or {}).get("tag_name") or "").strip()
    except (httpx.HTTPError, ValueError) as e:
        raise ResolutionError(
            f"Could not resolve latest release tag from {api_url}: {e}. "
            "Set FIOCHAT_INSTALL_TAG explicitly (e.g. v0.2.0) and retry."
        ) from e
    if not tag:
        raise ResolutionError(
            f"Could not resolve latest release tag from {api_url}. "
            "Set FIOCHAT_INSTALL_TAG explicitly (e.g. v0.2.0) and retry."
        )
    logger.info("Resolved %s latest release -> %s", repo, tag)
    return tag


def download_file(client: httpx.Client, url: str, out: Path) -> None:
    logger.info("Download %s", url)
    try:
        with client.stream("GET", url) as r:
            r.raise_for_status()
            with open(out, "wb") as f:
                for chunk in r.iter_bytes():
                    f.write(chunk)
    except httpx.HTTPError as e:
        raise DownloadError(f"Download failed: {url}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"Cannot write {out}: {e}") from e


def sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(1024 * 1024), b""):
            h.update(block)
    return h.hexdigest()


def verify_checksum(archive: Path, checksum_file: Path) -> None:
    """``sha256sum -c`` equivalent: the first token of the file is the expected digest."""

    text = checksum_file.read_text(encoding="utf-8", errors="replace").strip()
    expected = text.split()[0].lower() if text else ""
    if not _SHA256_RE.match(expected):
        raise ChecksumMismatchError(f"Checksum file {checksum_file.name} does not contain a SHA-256 digest")
    actual = sha256_file(archive)
    if actual != expected:
        raise ChecksumMismatchError(
            f"Checksum mismatch for {archive.name}: expected {expected}, got {actual}. "
            "Nothing was installed; re-run to download again."
        )
    logger.info("Checksum OK: %s", archive.name)


def _extract(archive: Path, dest: Path) -> Path:
    try:
        with tarfile.open(archive, "r:gz") as tar:
            tar.extractall(dest, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise FilesystemError(f"Cannot extract {archive.name}: {e}") from e

    candidates = sorted(p for p in dest.iterdir() if p.is_dir() and p.name.startswith("fiochat-"))
    return candidates[0] if candidates else dest


def locate_binary(tree: Path) -> Path:
    for rel in BINARY_CANDIDATES:
        p = tree / rel
        if p.is_file():
            return p
    raise FilesystemError(
        f"Release archive is missing the fiochat executable (expected {' or '.join(BINARY_CANDIDATES)})"
    )


def install_alias(bin_dir: Path, *, force: bool = False, search_path: Optional[str] = None) -> AliasResult:
    """Point ``fio`` at ``fiochat`` unless that would shadow an unrelated ``fio``."""

    alias = Path(bin_dir) / ALIAS_NAME
    target = Path(bin_dir) / BINARY_NAME

    def _link() -> AliasResult:
        if alias.is_symlink() or alias.exists():
            alias.unlink()
        os.symlink(target, alias)
        logger.info("Installed alias: %s -> %s", alias, target)
        return AliasResult(installed=True)

    if force:
        return _link()

    hint = (
        f"If you want fiochat to answer to '{ALIAS_NAME}', run: "
        f"sudo ln -sf {target} {alias} (this overrides the existing {ALIAS_NAME})."
    )

    if alias.is_symlink():
        if Path(os.readlink(alias)).name == BINARY_NAME:
            return _link()
        warning = f"{alias} already points elsewhere ({os.readlink(alias)}). Installed as {BINARY_NAME}. {hint}"
        logger.warning(warning)
        return AliasResult(installed=False, warning=warning)
    if alias.exists():
        warning = f"An unrelated {ALIAS_NAME} already exists at {alias}. Installed as {BINARY_NAME}. {hint}"
        logger.warning(warning)
        return AliasResult(installed=False, warning=warning)

    existing = shutil.which(ALIAS_NAME, path=search_path)
    if existing and Path(existing) not in {alias, target}:
        warning = (
            f"An alternate {ALIAS_NAME} (e.g. the flexible I/O tester) already exists at {existing}. "
            f"Installed as {BINARY_NAME}. {hint}"
        )
        logger.warning(warning)
        return AliasResult(installed=False, warning=warning)

    return _link()


def harden_tree(root: Path, *, chown_root: bool) -> None:
    """Root-owned, no group/other write."""

    if chown_root:
        try:
            run_cmd(["chown", "-R", "root:root", str(root)])
        except CommandFailed as e:
            raise FilesystemError(f"Could not set ownership of {root}: {e}") from e
    strip_group_other_write(root)


def install(
    artifact: ReleaseArtifact,
    target_root: Path,
    *,
    client: httpx.Client,
    bin_dir: Path,
    chown_root: bool = False,
    force_alias: bool = False,
    workdir: Optional[Path] = None,
    search_path: Optional[str] = None,
) -> ReleaseInstall:
    """Download, verify, extract and promote one release.

    Nothing under ``target_root`` or ``bin_dir`` is touched until the archive's
    checksum has been verified and the executable located.
    """

    target_root = Path(target_root)
    logger.info("Release install %s %s (%s) -> %s", artifact.repo, artifact.tag, artifact.platform, target_root)

    with tempfile.TemporaryDirectory(prefix="fiochat-release-", dir=str(workdir) if workdir else None) as tmp:
        tmpdir = Path(tmp)
        archive = tmpdir / artifact.archive_name
        checksum = tmpdir / f"{artifact.archive_name}.sha256"

        download_file(client, artifact.archive_url, archive)
        download_file(client, artifact.checksum_url, checksum)
        verify_checksum(archive, checksum)

        extract_dir = tmpdir / "extract"
        extract_dir.mkdir()
        tree = _extract(archive, extract_dir)
        rel_binary = locate_binary(tree).relative_to(tree)

        replace_tree(tree, target_root)

    release_bin = target_root / rel_binary
    installed_bin = Path(bin_dir) / BINARY_NAME
    atomic_copy(release_bin, installed_bin, mode=0o755)
    logger.info("Installed binary: %s", installed_bin)

    alias = install_alias(bin_dir, force=force_alias, search_path=search_path)
    harden_tree(target_root, chown_root=chown_root)
    logger.info("Installed release to %s", target_root)

    return ReleaseInstall(artifact=artifact, root=target_root, binary=installed_bin, alias=alias)


def install_local_binary(
    project_root: Path,
    bin_dir: Path,
    *,
    rebuild: bool,
    force_alias: bool = False,
    search_path: Optional[str] = None,
) -> List[Path]:
    """Manual install path: build with cargo when needed and install the local binary."""

    release_bin = Path(project_root) / "target" / "release" / BINARY_NAME
    if rebuild or not os.access(release_bin, os.X_OK):
        if not release_bin.exists():
            logger.warning("Release binary not found at: %s", release_bin)
        if shutil.which("cargo") is None:
            raise FilesystemError(
                f"cargo not found; cannot build {release_bin}. "
                "Install the Rust toolchain or provide an existing release binary."
            )
        run_cmd(["cargo", "build", "--release"], cwd=str(project_root))
        logger.info("Built release binary: %s", release_bin)

    installed = [Path(bin_dir) / BINARY_NAME]
    atomic_copy(release_bin, installed[0], mode=0o755)
    logger.info("Installed binary: %s", installed[0])
    install_alias(bin_dir, force=force_alias, search_path=search_path)

    notify = Path(project_root) / "scripts" / "fio-notify"
    if notify.is_file():
        atomic_copy(notify, Path(bin_dir) / "fio-notify", mode=0o755)
        installed.append(Path(bin_dir) / "fio-notify")
        logger.info("Installed helper: %s", installed[-1])
    return installed
