import pytest

from tests.fakes import RecordingSleep
from utils.config import Settings
from utils.schemas import SourceSpec


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep the developer's environment and .env file out of the tests."""
    for name in Settings.model_fields:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("ENV", raising=False)
    monkeypatch.chdir(tmp_path)
    yield


@pytest.fixture
def table_spec():
    return SourceSpec(project="test-project", dataset="sales", table="orders")


@pytest.fixture
def sleep():
    return RecordingSleep()
