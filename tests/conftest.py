"""Test configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Ensure the repository root is on sys.path so the top-level modules import without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from kep_settings import get_settings  # noqa: E402


def adjacency_predicate(adjacency):
    """Predicate over plain labels: p accepts q when q is listed under p."""

    def can_receive(pair, other):
        return other in adjacency.get(pair, ())

    return can_receive


@pytest.fixture(autouse=True)
def fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def two_cycle():
    adjacency = {"A": ["B"], "B": ["A"]}
    return ["A", "B"], adjacency_predicate(adjacency)


@pytest.fixture
def three_cycle():
    adjacency = {"A": ["B"], "B": ["C"], "C": ["A"]}
    return ["A", "B", "C"], adjacency_predicate(adjacency)


@pytest.fixture
def greedy_trap():
    payloads = ["A", "B", "C", "D", "E"]
    adjacency = {"A": ["B"], "B": ["A"], "C": ["D"], "D": ["E"], "E": ["C"]}
    return payloads, adjacency_predicate(adjacency)
