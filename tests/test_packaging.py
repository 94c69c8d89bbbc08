"""Tests for project metadata and public API documentation."""

import inspect
import re
from pathlib import Path

import pytest

from pyyoyo.app import AttemptTable, StatusHeader, SupervisorApp, SupervisorRunner, ThreadTable
from pyyoyo.supervisor import Supervisor

ROOT = Path(__file__).resolve().parent.parent


def test_readme_is_packaged():
    """Test the package metadata points at the project README."""
    pyproject = (ROOT / "pyproject.toml").read_text()
    match = re.search(r'^readme = "([^"]+)"', pyproject, re.MULTILINE)

    assert match is not None
    assert match.group(1) == "README.md"
    assert (ROOT / match.group(1)).is_file()


@pytest.mark.parametrize(
    "cls",
    [Supervisor, SupervisorApp, SupervisorRunner, StatusHeader, ThreadTable, AttemptTable],
)
def test_public_methods_are_documented(cls):
    """Test every method defined on the class carries a docstring."""
    undocumented = [
        name
        for name, member in vars(cls).items()
        if (inspect.isfunction(member) or isinstance(member, property))
        and not (name.startswith("__") and name != "__init__")
        and not inspect.getdoc(member)
    ]

    assert undocumented == []
