"""Package-level checks: every module imports and public annotations resolve."""

import importlib
import pkgutil
from typing import get_type_hints

import pytest

import wellkeep
from wellkeep.protocol import RepositoryProtocol
from wellkeep.repository import Repository, RepositoryRegistry


@pytest.mark.parametrize("name", sorted(m.name for m in pkgutil.iter_modules(wellkeep.__path__)))
def test_module_imports(name):
    importlib.import_module(f"wellkeep.{name}")


def test_list_annotations_refer_to_builtin_list():
    # Both classes define a method named list(); annotations must not see it
    assert get_type_hints(Repository.export_documents)["return"] == list[dict]
    assert get_type_hints(RepositoryProtocol.export_documents)["return"] == list[dict]
    assert get_type_hints(RepositoryRegistry.names)["return"] == list[str]


def test_public_names_exported():
    for name in wellkeep.__all__:
        assert hasattr(wellkeep, name), name
