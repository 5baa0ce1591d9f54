"""Target discovery - turn CLI inputs into the ordered target list.

Order matters (it is dispatch priority):

    1. packages listed in the packages file that contain a build
       configuration (only with ``--with-packages``)
    2. explicit ``--with`` paths
    3. the root directory itself

The packages file is a JSON array of directory paths relative to the root::

    ["packages/core", "packages/ui", "apps/site"]
"""

from __future__ import annotations

import json
import os
from collections.abc import Sequence
from pathlib import Path

from parbuild.builder import DEFAULT_CONFIG_FILENAME, has_build_config
from parbuild.core.errors import InvalidConfigError, MissingConfigError
from parbuild.core.logging import get_logger

logger = get_logger(__name__)


def resolve_path(root: str | Path, path: str | Path) -> str:
    """Absolute path of ``path`` relative to ``root``."""
    return os.path.abspath(os.path.join(root, path))


def read_package_list(root: str | Path, packages_file: str | Path) -> list[str]:
    """Load the package paths from ``packages_file`` (relative to root).

    Raises:
        MissingConfigError: the file does not exist.
        InvalidConfigError: the file is not a JSON array of strings.
    """
    path = Path(resolve_path(root, packages_file))
    if not path.is_file():
        raise MissingConfigError(str(path), f"Packages file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise InvalidConfigError(str(path), None, f"Cannot read packages file {path}: {exc}", cause=exc) from exc
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise InvalidConfigError(str(path), data, f"Packages file {path} must be a JSON array of paths")
    return data


def discover_packages(
    root: str | Path,
    packages_file: str | Path = "packages.json",
    config_filename: str = DEFAULT_CONFIG_FILENAME,
) -> list[str]:
    """Real paths of listed packages that have a build configuration."""
    found = []
    for entry in read_package_list(root, packages_file):
        realpath = os.path.realpath(resolve_path(root, entry))
        if has_build_config(realpath, config_filename):
            found.append(realpath)
        else:
            logger.debug("discovery.skipped", package=entry, reason="no build configuration")
    logger.info("discovery.packages", found=len(found))
    return found


def resolve_targets(
    root: str | Path | None = None,
    *,
    with_paths: Sequence[str] = (),
    with_packages: bool = False,
    packages_file: str | Path = "packages.json",
    config_filename: str = DEFAULT_CONFIG_FILENAME,
) -> list[str]:
    """Ordered build targets for a run: packages, ``--with`` paths, root."""
    root = os.path.abspath(root or os.getcwd())
    packages = discover_packages(root, packages_file, config_filename) if with_packages else []
    extra = [resolve_path(root, path) for path in with_paths]
    return [*packages, *extra, root]


__all__ = [
    "discover_packages",
    "read_package_list",
    "resolve_path",
    "resolve_targets",
]
