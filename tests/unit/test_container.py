"""Unit tests for the service container (pungpung/services/container.py)"""
import pytest

from pungpung.db.memory_store import InMemoryProgressStore
from pungpung.db.postgres_store import PostgresProgressStore
from pungpung.services.container import (
    ServiceContainer,
    create_store,
    get_container,
    init_container,
    reset_container,
)
from pungpung.services.progress_service import ProgressService


@pytest.fixture(autouse=True)
def clean_container():
    reset_container()
    yield
    reset_container()


def test_get_container_before_init():
    with pytest.raises(RuntimeError):
        get_container()


def test_init_container(store, clock, mock_generator):
    container = init_container(store, clock=clock, generator=mock_generator)

    assert get_container() is container
    assert container.clock is clock


def test_progress_service_is_lazy_singleton(store, clock, mock_generator):
    container = ServiceContainer(store=store, clock=clock, generator=mock_generator)

    service = container.progress_service

    assert isinstance(service, ProgressService)
    assert container.progress_service is service
    assert service.store is store


def test_create_store_backends():
    assert isinstance(create_store("memory"), InMemoryProgressStore)
    assert isinstance(create_store("postgres"), PostgresProgressStore)
