"""Shared fixtures for the pipeline tests."""

import pytest

from synthetic_data import make_process_data


@pytest.fixture
def process_data():
    return make_process_data()
