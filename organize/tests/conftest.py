"""Shared fixtures for the organizer test suite."""

import json
import logging

import pytest

from organize.models import BrandConfig


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers setup_logging attached so later tests log to caplog only."""
    yield
    logging.getLogger("organize").handlers.clear()


@pytest.fixture
def data_dir(tmp_path):
    """Empty flat data directory."""
    directory = tmp_path / "data"
    directory.mkdir()
    return directory


@pytest.fixture
def acme_config():
    """A pass-through brand whose directory name equals its key."""
    return BrandConfig(key="acme", name="acme", pattern=r"^acme-.*\.json$")


@pytest.fixture
def acme_files(data_dir):
    """Two ACME category files plus an unrelated brand's file."""
    for name, records in (
        ("acme-sofas.json", [{"title": "X"}]),
        ("acme-chairs.json", [{"title": "Y", "price": 100}]),
        ("other-tables.json", [{"title": "Z"}]),
    ):
        (data_dir / name).write_text(json.dumps(records), encoding="utf-8")
    return data_dir
