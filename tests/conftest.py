import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from csvbuttler.config import Settings
from csvbuttler.data_loader import SharedState
from csvbuttler.main import create_app

SCENARIO_CSV = "1;Widget;;Acme;9.99\n2;Gadget;Nice;Acme;19.99\n0;Bad;;Acme;0.00\n"

TEST_SECRETS = {
    "app": "test-app-secret-0123456789abcdef0123456789",
    "csrf": "test-csrf-secret-0123456789abcdef0123456789",
    "jwt": "test-jwt-secret-0123456789abcdef0123456789",
}


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch, tmp_path):
    """Keep the repository's config/ directory and APP_* variables out of tests."""
    for name in list(os.environ):
        if name.upper().startswith("APP_"):
            monkeypatch.delenv(name, raising=False)

    monkeypatch.setenv("APP_CONFIG_DIR", str(tmp_path / "no-config"))


@pytest.fixture
def csv_file(tmp_path) -> Path:
    path = tmp_path / "products.csv"
    path.write_text(SCENARIO_CSV, encoding="utf-8")
    return path


@pytest.fixture
def settings(csv_file) -> Settings:
    return Settings(
        csv={"uri": str(csv_file), "delimiter": ";"},
        secrets=TEST_SECRETS,
    )


@pytest.fixture
def shared_state(settings) -> SharedState:
    return SharedState.build(settings)


@pytest.fixture
def client(shared_state):
    with TestClient(create_app(shared_state)) as c:
        yield c
