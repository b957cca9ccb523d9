"""
Shared fixtures for photoindex tests.

Store contract tests run once per PhotoStore variant through the
parametrized `store` fixture.
"""

import itertools
import logging

import pytest

from photoindex.db import Database, MemoryPhotoStore, PhotoRecord, SqlPhotoStore


@pytest.fixture
def memory_store():
    return MemoryPhotoStore()


@pytest.fixture
def sql_store():
    database = Database('sqlite:///:memory:')
    database.init_schema()
    yield SqlPhotoStore(database)
    database.dispose()


@pytest.fixture(params=['memory', 'sql'])
def store(request):
    """Each test using this fixture runs against both store variants."""
    return request.getfixturevalue(f'{request.param}_store')


@pytest.fixture
def add_photo(store):
    """Factory inserting a photo with a unique path; keyword arguments override fields."""
    counter = itertools.count(1)

    def _add(**fields):
        n = next(counter)
        fields.setdefault('path', f'/photos/img_{n:04d}.jpg')
        fields.setdefault('filename', fields['path'].rsplit('/', 1)[-1])
        return store.add_photo(PhotoRecord(id=None, **fields))

    return _add


@pytest.fixture(autouse=True)
def reset_root_handlers():
    """Drop handlers installed by setup_logging so they do not outlive a CliRunner stream."""
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, '_photoindex', False):
            root.removeHandler(handler)
            handler.close()
