"""
Recipe loader — imports recipe modules into a DependencyRegistry.

Recipes are ordinary Python files. Each exposes a module-level
``register(deps)`` function that declares its dependencies on the
registry it is given. Expects structure::

    deps/
        nginx.py          # def register(deps): ...
        packages.py
        _helpers.py       # underscore files are skipped

Files are imported in sorted order under a private module name so
recipe directories never collide with installed packages.
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
from collections.abc import Iterable
from pathlib import Path

from converge.core.errors import ConvergeError
from converge.core.registry import DependencyRegistry

logger = logging.getLogger(__name__)


class RecipeLoadError(ConvergeError):
    """A recipe file could not be imported or registered."""


def discover_recipe_files(paths: Iterable[Path]) -> list[Path]:
    """Expand directories into their recipe files.

    Missing paths are skipped with a debug log; explicit files are
    kept as given.
    """
    files: list[Path] = []
    for path in paths:
        if path.is_file():
            files.append(path)
        elif path.is_dir():
            files.extend(
                child for child in sorted(path.glob("*.py"))
                if not child.name.startswith("_")
            )
        else:
            logger.debug("Recipe path not found: %s", path)
    return list(dict.fromkeys(files))


def load_recipe_file(path: Path, registry: DependencyRegistry) -> int:
    """Import one recipe file and call its ``register``.

    Returns:
        Number of dependencies the file declared.

    Raises:
        RecipeLoadError: On import failure, a missing ``register``, or
            an error raised while registering.
    """
    digest = hashlib.sha1(str(path.resolve()).encode()).hexdigest()[:8]
    module_name = f"converge_recipes.{path.stem}_{digest}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise RecipeLoadError(f"Cannot import recipe file {path}")

    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise RecipeLoadError(f"Error importing {path}: {e}") from e

    register = getattr(module, "register", None)
    if not callable(register):
        raise RecipeLoadError(f"{path} has no register(deps) function")

    before = len(registry)
    try:
        register(registry)
    except ConvergeError as e:
        raise RecipeLoadError(f"{path}: {e}") from e
    except Exception as e:
        raise RecipeLoadError(f"Error registering {path}: {e}") from e

    count = len(registry) - before
    logger.debug("Loaded %d dependencies from %s", count, path)
    return count


def load_recipes(
    paths: Iterable[Path],
    registry: DependencyRegistry | None = None,
) -> DependencyRegistry:
    """Load every recipe file under ``paths`` into a registry."""
    registry = registry if registry is not None else DependencyRegistry()
    files = discover_recipe_files(paths)
    for path in files:
        load_recipe_file(path, registry)
    logger.info("Loaded %d dependencies from %d recipe file(s)", len(registry), len(files))
    return registry
