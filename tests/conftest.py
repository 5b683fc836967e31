"""
Pytest configuration and shared fixtures for Instay Dashboard tests.

Test Categories:
- unit: Fast tests with no external dependencies (< 100ms each)
- slow: Tests that touch background threads or real timers
- integration: Tests requiring the real Bird API

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip integration tests
- pytest                      # All tests
"""
import pytest

from tests.reset_singletons import reset_all_singletons


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "slow: Slow tests (threads, timers)")
    config.addinivalue_line("markers", "integration: Integration tests (Bird API required)")


@pytest.fixture(autouse=True)
def reset_singletons_after_test():
    yield
    reset_all_singletons()


@pytest.fixture(scope="function")
def mock_settings(tmp_path, monkeypatch):
    """
    Mock settings for testing.

    Uses temporary paths to avoid affecting real data, and no Bird credentials.
    """
    from config.settings import Settings

    mock = Settings(
        data_path=tmp_path / "data",
        snapshot_path=tmp_path / "instay_output.csv",
        archive_path=tmp_path / "archive",
        bird_api_key="",
        bird_workspace_id="",
        bird_channel_id="",
    )

    # Patch the global settings and every module that imported it
    monkeypatch.setattr("config.settings.settings", mock)
    for module in (
        "instay.services.name_map",
        "instay.services.occurrence_index",
        "instay.services.template_blocklist",
        "instay.services.bird_client",
        "instay.services.visibility",
        "instay.services.guest_service",
        "instay.services.snapshot_poller",
    ):
        monkeypatch.setattr(f"{module}.settings", mock)
    return mock


@pytest.fixture
def name_map(tmp_path):
    from instay.services.name_map import NameMapStore
    return NameMapStore(file_path=str(tmp_path / "phone_name_map.json"))


@pytest.fixture
def occurrence_index(tmp_path):
    from instay.services.occurrence_index import OccurrenceIndexStore
    return OccurrenceIndexStore(file_path=str(tmp_path / "phone_index.json"))


def write_export(path, rows, header=("First Name", "Last Name", "Room Number", "Ph.", "Checkout Date")):
    """Write a guest export CSV with the given header and row tuples."""
    lines = [",".join(header)]
    lines.extend(",".join(row) for row in rows)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def export_writer():
    return write_export
