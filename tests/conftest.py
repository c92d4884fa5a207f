from __future__ import annotations

import hashlib
import io
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Optional

import httpx
import pytest

from fio_installer.answers import resolve
from fio_installer.context import InstallCtx
from fio_installer.lib import launchd, ports, release, services
from fio_installer.lib.command import CmdResult, CommandFailed
from fio_installer.lib.env import Paths
from fio_installer.lib.hostinfo import HostInfo
from fio_installer.prompts import Prompter

UNIT_TEXT = {
    "fiochat.service": "[Unit]\nDescription=fiochat API\n\n[Service]\nUser=svc\nExecStart=/usr/local/bin/fiochat --serve 127.0.0.1:8000\n",
    "fiochat-telegram.service": "[Unit]\nDescription=fiochat Telegram relay\n\n[Service]\nUser=svc\nExecStart=/usr/bin/node /opt/fiochat/telegram/dist/index.js\n",
}


@pytest.fixture()
def paths(tmp_path: Path) -> Paths:
    p = Paths.rooted(tmp_path / "root", home=tmp_path / "home")
    p.unit_dir.mkdir(parents=True)
    p.bin_dir.mkdir(parents=True)
    p.dev_log_dir.mkdir(parents=True, exist_ok=True)
    return p


def make_host(**overrides) -> HostInfo:
    values = dict(
        os_name="linux",
        machine="x86_64",
        has_systemd=True,
        is_root=True,
        current_user="operator",
        hostname="testhost",
    )
    values.update(overrides)
    return HostInfo(**values)


@pytest.fixture()
def host() -> HostInfo:
    return make_host()


def answers_for(**values: str):
    return resolve(environ={}, flags=values)


class Recorder:
    """Stands in for run_cmd; answers by argv prefix."""

    def __init__(self) -> None:
        self.calls: List[List[str]] = []
        self.returncodes: Dict[tuple, int] = {}

    def fail(self, *prefix: str, code: int = 1) -> None:
        self.returncodes[tuple(prefix)] = code

    def __call__(self, argv, *, check=True, env=None, cwd=None, input_text=None) -> CmdResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        code = 0
        for prefix, rc in self.returncodes.items():
            if tuple(argv[: len(prefix)]) == prefix:
                code = rc
        res = CmdResult(argv=argv, returncode=code, stdout="", stderr="")
        if check and code != 0:
            raise CommandFailed(res)
        return res

    def ran(self, *prefix: str) -> bool:
        return any(tuple(c[: len(prefix)]) == prefix for c in self.calls)


@pytest.fixture()
def commands(monkeypatch) -> Recorder:
    rec = Recorder()
    for mod in (services, release, launchd, ports):
        monkeypatch.setattr(mod, "run_cmd", rec)
    return rec


def build_release_tarball(tag: str, platform: str, *, with_units: bool = True) -> bytes:
    top = f"fiochat-{tag}-{platform}"
    files = {f"{top}/bin/fiochat": b"#!/bin/sh\necho fiochat\n", f"{top}/README.md": b"fiochat\n"}
    if with_units:
        for name, text in UNIT_TEXT.items():
            files[f"{top}/deploy/systemd/{name}"] = text.encode()
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if name.endswith("/bin/fiochat") else 0o644
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def release_transport(
    repo: str,
    tag: str,
    platform: str,
    *,
    latest: Optional[str] = None,
    corrupt_checksum: bool = False,
    seen: Optional[List[str]] = None,
) -> httpx.MockTransport:
    archive = build_release_tarball(tag, platform)
    name = f"fiochat-{tag}-{platform}.tar.gz"
    digest = hashlib.sha256(archive).hexdigest()
    if corrupt_checksum:
        digest = "0" * 64
    base = f"https://github.com/{repo}/releases/download/{tag}/{name}"

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if seen is not None:
            seen.append(url)
        if url == f"https://api.github.com/repos/{repo}/releases/latest" and latest:
            return httpx.Response(200, json={"tag_name": latest})
        if url == base:
            return httpx.Response(200, content=archive)
        if url == base + ".sha256":
            return httpx.Response(200, text=f"{digest}  {name}\n")
        return httpx.Response(404, text="not found")

    return httpx.MockTransport(handler)


@pytest.fixture()
def make_ctx(tmp_path: Path, paths: Paths, host: HostInfo) -> Callable[..., InstallCtx]:
    workspace = tmp_path / "workspace"
    workspace.mkdir()

    def _make(*, answers=None, host_info: Optional[HostInfo] = None, http: Optional[httpx.Client] = None, **kw) -> InstallCtx:
        return InstallCtx(
            answers=answers if answers is not None else answers_for(),
            host=host_info or host,
            paths=paths,
            prompter=Prompter(interactive=False, out=io.StringIO()),
            workspace=workspace,
            http=http,
            **kw,
        )

    return _make
