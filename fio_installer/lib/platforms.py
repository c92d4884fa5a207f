from __future__ import annotations

import platform
from typing import Dict, Optional, Tuple

from ..errors import UnsupportedPlatformError

# (os, cpu) -> published release asset label
SUPPORTED_PLATFORMS: Dict[Tuple[str, str], str] = {
    ("linux", "x86_64"): "linux-x86_64",
    ("linux", "amd64"): "linux-x86_64",
    ("linux", "aarch64"): "linux-arm64",
    ("linux", "arm64"): "linux-arm64",
    ("darwin", "x86_64"): "macos-x86_64",
    ("darwin", "amd64"): "macos-x86_64",
    ("darwin", "arm64"): "macos-arm64",
    ("darwin", "aarch64"): "macos-arm64",
}


def detect_platform(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Map host OS/CPU to a release platform label. No fallback for unknown hosts."""

    os_name = (system if system is not None else platform.system()).strip().lower()
    cpu = (machine if machine is not None else platform.machine()).strip().lower()
    label = SUPPORTED_PLATFORMS.get((os_name, cpu))
    if label is None:
        supported = ", ".join(sorted(set(SUPPORTED_PLATFORMS.values())))
        raise UnsupportedPlatformError(
            f"No release artifact for os={os_name or '?'} arch={cpu or '?'} (published: {supported}). "
            "Use the manual install method and build from source."
        )
    return label
