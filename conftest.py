"""Pytest configuration for the multibody package.

The sources live under src/ but import as `multibody`, so a checkout is
registered under that name before any test module is collected.
"""

import importlib.util
import sys
from pathlib import Path

SRC_DIR = Path(__file__).parent / "src"


def _load_package(name: str, src_dir: Path):
    """Import `src_dir` as package `name`, replacing any stale copy."""
    for key in [k for k in sys.modules if k == name or k.startswith(name + ".")]:
        del sys.modules[key]
    spec = importlib.util.spec_from_file_location(name, src_dir / "__init__.py",
                                                  submodule_search_locations=[str(src_dir)])
    package = importlib.util.module_from_spec(spec)
    sys.modules[name] = package
    spec.loader.exec_module(package)
    return package


_load_package("multibody", SRC_DIR)
