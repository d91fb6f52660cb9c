"""
conftest.py
~~~~~~~~~~~

Shared fixtures for the network engine tests.
"""

import os
import sys

import pytest

# Add project root to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from nwengine import Network, Rand32, UnitKind


@pytest.fixture
def rng():
    """Generator with a fixed seed."""
    return Rand32(12345)


@pytest.fixture
def empty_network(rng):
    """Network with no units."""
    return Network(rng=rng)


@pytest.fixture
def layered(rng):
    """
    Factory building a fully connected layered network in memory.

    Every unit has a bias and a sigmoid activation over [0, 1].
    """
    def build(row_counts):
        net = Network(rng=rng)
        rows = []
        last = len(row_counts) - 1
        for row, count in enumerate(row_counts):
            kind = (UnitKind.INPUT if row == 0
                    else UnitKind.OUTPUT if row == last
                    else UnitKind.INTERNAL)
            rows.append([
                net.create_unit(0, row, kind, bias=True, name=f"u{row}")
                for _ in range(count)
            ])
        for upper, lower in zip(rows, rows[1:]):
            for source in upper:
                for dest in lower:
                    net.create_connection(source, dest)
        return net

    return build


@pytest.fixture
def temp_dir(tmp_path):
    """Create a temporary directory for network files."""
    directory = tmp_path / "networks"
    directory.mkdir()
    return str(directory)
