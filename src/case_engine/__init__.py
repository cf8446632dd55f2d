"""Citizen case lifecycle and SLA governance engine."""

import os
import subprocess

__version__ = "0.1.0"
ENGINE_VERSION = __version__


def _git_describe() -> str | None:
    """`git describe` of the checkout this package runs from, or None outside one."""
    try:
        out = subprocess.run(
            ["git", "describe", "--always", "--dirty", "--tags"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
            cwd=os.path.dirname(os.path.abspath(__file__)),
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    if out.returncode != 0:
        return None
    return out.stdout.strip() or None


# Lifecycle tables version, stamped on creation audit rows: env > git describe > package version
REGISTRY_VERSION = os.environ.get("CASE_ENGINE_REGISTRY_VERSION") or _git_describe() or __version__
