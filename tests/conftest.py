import json
from pathlib import Path

import pytest


REPO_ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def repo_root():
    return REPO_ROOT


@pytest.fixture
def lab_env():
    """Environment a storage synth needs without touching Azure."""
    return {
        "ARM_SUBSCRIPTION_ID": "00000000-0000-0000-0000-000000000000",
        "KEY_VAULT_NAME": "kv-ai-lab-0115",
    }


@pytest.fixture
def write_params(tmp_path):
    """Write an ARM deployment parameters document and return its path."""

    def _write(values, name="params.json"):
        doc = {
            "$schema": "https://schema.management.azure.com/schemas/2019-04-01/deploymentParameters.json#",
            "contentVersion": "1.0.0.0",
            "parameters": {k: {"value": v} for k, v in values.items()},
        }
        path = tmp_path / name
        path.write_text(json.dumps(doc), encoding="utf-8")
        return path

    return _write


@pytest.fixture(autouse=True)
def mock_sleep(monkeypatch):
    """Skip time.sleep calls in retry loops."""
    monkeypatch.setattr("time.sleep", lambda x: None)
