import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from salesdesk.config.settings import settings  # noqa: E402
from salesdesk.logs import LogManager  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path, monkeypatch):
    """Keep log files, runtime YAML and the token cache inside tmp_path."""
    monkeypatch.setattr(settings, "runs_dir", str(tmp_path / "runs"))
    monkeypatch.setattr(settings, "data_dir", str(tmp_path / "data"))
    monkeypatch.setattr(settings, "zoho_token_file", str(tmp_path / "runs" / "zoho_token.json"))
    LogManager.reset()
    yield
    LogManager.reset()


@pytest.fixture
def zoho():
    from fakes import FakeZoho

    return FakeZoho()
