"""Shared pytest fixtures: Lambda module loading and AWS client isolation."""
import itertools
import importlib.util
import os
import sys
from datetime import datetime
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
LAMBDA_ROOT = ROOT / "stacks" / "lambda_functions"
SCRIPTS_ROOT = ROOT / "scripts"

# Lambda modules build boto3 clients at import time; clients are replaced by
# mocks before any call, but construction still needs a region.
os.environ.setdefault("AWS_DEFAULT_REGION", "ap-northeast-3")

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
# business-hours handlers import their rest_days sibling as a top-level module
sys.path.insert(0, str(LAMBDA_ROOT / "business_hours"))

_module_ids = itertools.count()


def load_file(path: Path):
    """Import a file as a fresh, uniquely named module."""
    name = f"{path.parent.name}_{path.stem}_{next(_module_ids)}"
    spec = importlib.util.spec_from_file_location(name, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def load_lambda(monkeypatch):
    """Load stacks/lambda_functions/<asset>/<module>.py with the given environment.

    Module-level settings are read at import, so the environment is applied
    first and every call returns a new module object.
    """
    def _load(asset: str, module: str = "index", env: dict = None):
        for key, value in (env or {}).items():
            monkeypatch.setenv(key, value)
        return load_file(LAMBDA_ROOT / asset / f"{module}.py")
    return _load


@pytest.fixture
def load_script(monkeypatch):
    """Load scripts/<name>.py with scripts/ importable (for `from config import ...`)."""
    def _load(name: str):
        monkeypatch.syspath_prepend(str(SCRIPTS_ROOT))
        return load_file(SCRIPTS_ROOT / f"{name}.py")
    return _load


@pytest.fixture
def freeze_now(monkeypatch):
    """Pin local_now() inside a business-hours module to a fixed moment."""
    def _freeze(module, moment: datetime):
        monkeypatch.setattr(module, "local_now", lambda _tz=None: moment)
    return _freeze
