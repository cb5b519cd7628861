"""Shared fixtures."""

from __future__ import annotations

from typing import List

import pytest

from fakes import DummyLog, make_table, scenario_groups as _scenario_groups
from polyfold.domain.regions import GroupInfo
from polyfold.logging import Reporter
from polyfold.sampling.sample_table import SampleTable


@pytest.fixture
def dummy_log() -> DummyLog:
    return DummyLog()


@pytest.fixture
def reporter(dummy_log: DummyLog) -> Reporter:
    return Reporter(logger=dummy_log, error_handler=lambda *args: None)


@pytest.fixture
def scenario_groups() -> List[GroupInfo]:
    return _scenario_groups()


@pytest.fixture
def table_1000() -> SampleTable:
    return make_table()
