# src/skale_cli/cli/sources.py

"""Local application sources: project metadata and the git plumbing used by deploy/run."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path

from ..errors import SkaleError, StaleDeploymentError
from ..remote.models import Application

logger = logging.getLogger(__name__)


def read_package(cwd: Path) -> dict:
    path = cwd / "package.json"
    try:
        data = json.loads(path.read_text("utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        raise SkaleError(f"cannot read {path}: {e}") from e
    return data if isinstance(data, dict) else {}


def app_name(cwd: Path) -> str:
    """package.json name, falling back to the directory name."""
    name = read_package(cwd).get("name")
    return str(name) if name else cwd.resolve().name


def app_file(cwd: Path, override: str | None = None) -> str:
    return override or f"{app_name(cwd)}.js"


def _git(cwd: Path, *args: str) -> subprocess.CompletedProcess[str]:
    logger.debug("git %s", " ".join(args))
    try:
        return subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=False)
    except OSError as e:
        raise SkaleError(f"cannot run git: {e}") from e


def local_revision(cwd: Path) -> str | None:
    res = _git(cwd, "rev-parse", "HEAD")
    if res.returncode != 0:
        return None
    return res.stdout.strip() or None


def has_local_changes(cwd: Path) -> bool:
    res = _git(cwd, "status", "--porcelain")
    return res.returncode == 0 and bool(res.stdout.strip())


def push(cwd: Path, url: str) -> None:
    """Transfer the committed sources to the application repository."""
    res = _git(cwd, "push", "--force", url, "HEAD:refs/heads/master")
    if res.returncode != 0:
        raise SkaleError(f"git push to {url} failed: {res.stderr.strip() or res.returncode}")


def check_deployed(cwd: Path, app: Application) -> None:
    """Raise StaleDeploymentError if the local tree is not what was last deployed."""
    if has_local_changes(cwd):
        raise StaleDeploymentError(f"{app.name}: uncommitted local changes, commit and deploy first (or use --force)")
    revision = local_revision(cwd)
    if revision is None:
        raise StaleDeploymentError(f"{app.name}: not a git repository, deploy first (or use --force)")
    if app.commit != revision:
        raise StaleDeploymentError(
            f"{app.name}: local revision {revision[:8]} is not deployed"
            f" (deployed: {(app.commit or 'none')[:8]}), run `skale deploy` first (or use --force)"
        )
