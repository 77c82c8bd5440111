import pytest

from tests.fakes import InMemoryUnitOfWork, recording_collaborators


@pytest.fixture
def uow() -> InMemoryUnitOfWork:
    """
    Fresh in-memory unit of work with the same commit/rollback semantics
    as the SQLAlchemy one.
    """
    return InMemoryUnitOfWork()


@pytest.fixture
def collaborators():
    """Collaborators that record every call instead of hitting peer services."""
    return recording_collaborators()
