"""
test_store.py
~~~~~~~~~~~~~

Unit tests for the SQLite network catalog.
"""

import os
import sqlite3

import pytest

from nwengine import Rand32
from nwengine.store import (
    DB_NAME,
    NetworkStore,
    delete_network,
    delete_old_networks,
    get_network_metadata,
    list_saved_networks,
    load_network,
    save_network
)


@pytest.fixture
def simple_network(layered):
    """Create a simple 3-layer network for testing."""
    return layered([3, 4, 2])


def age_entry(model_dir, network_id, days):
    """Move an entry's creation time ``days`` days into the past."""
    conn = sqlite3.connect(os.path.join(model_dir, DB_NAME))
    try:
        conn.execute(
            "UPDATE networks SET created_at = datetime('now', ?) "
            "WHERE network_id = ?",
            (f'-{days} days', network_id)
        )
        conn.commit()
    finally:
        conn.close()


@pytest.mark.unit
class TestNetworkStore:
    """Test basic catalog operations."""

    def test_save_network_creates_database(self, simple_network, temp_dir):
        """Test that saving a network creates the database file."""
        success = save_network(simple_network, "net_1", model_dir=temp_dir)

        assert success is True
        assert os.path.exists(os.path.join(temp_dir, DB_NAME))

    def test_save_creates_missing_directory(self, simple_network, tmp_path):
        model_dir = str(tmp_path / "nested" / "models")
        assert save_network(simple_network, "net_1", model_dir=model_dir)
        assert os.path.isdir(model_dir)

    def test_save_network_with_metadata(self, simple_network, temp_dir):
        """Test that network metadata is saved correctly."""
        save_network(simple_network, "trained", model_dir=temp_dir,
                     trained=True, rms_error=0.125)

        metadata = get_network_metadata("trained", model_dir=temp_dir)

        assert metadata is not None
        assert metadata['network_id'] == "trained"
        assert metadata['num_units'] == 9
        assert metadata['num_input'] == 3
        assert metadata['num_output'] == 2
        assert metadata['trained'] is True
        assert metadata['rms_error'] == 0.125
        assert metadata['created_at'] is not None

    def test_load_network_restores_graph(self, simple_network, temp_dir):
        """Test that a loaded network matches the saved one exactly."""
        save_network(simple_network, "net_1", model_dir=temp_dir)

        loaded = load_network("net_1", model_dir=temp_dir, rng=Rand32(1))

        assert loaded is not None
        assert loaded.to_bytes() == simple_network.to_bytes()
        assert loaded.num_input == 3
        assert loaded.path == ''

    def test_loaded_network_computes_same_outputs(self, simple_network, temp_dir):
        save_network(simple_network, "net_1", model_dir=temp_dir)
        loaded = load_network("net_1", model_dir=temp_dir)

        results = []
        for net in (simple_network, loaded):
            net.setup_exec()
            for unit_id, value in zip(net.input_ids(), (0.2, 0.9, 0.4)):
                net.set_input(unit_id, value)
            net.forward_pass()
            results.append([net.read_output(ix) for ix in net.output_ids()])

        assert results[0] == results[1]

    def test_load_nonexistent_network(self, temp_dir):
        assert load_network("absent", model_dir=temp_dir) is None

    def test_resave_replaces_entry(self, simple_network, temp_dir):
        """Test that saving under an existing id overwrites the entry."""
        save_network(simple_network, "net_1", model_dir=temp_dir)
        simple_network.delete_unit(0)
        save_network(simple_network, "net_1", model_dir=temp_dir,
                     trained=True, rms_error=0.5)

        networks = list_saved_networks(model_dir=temp_dir)
        assert len(networks) == 1
        assert networks[0]['num_units'] == 8
        assert networks[0]['trained'] is True

    def test_list_saved_networks(self, layered, temp_dir):
        for ix, rows in enumerate([[1, 1], [2, 2], [2, 3, 1]]):
            save_network(layered(rows), f"net_{ix}", model_dir=temp_dir)

        networks = list_saved_networks(model_dir=temp_dir)

        assert sorted(n['network_id'] for n in networks) == ["net_0", "net_1", "net_2"]
        assert all('network_data' not in n for n in networks)

    def test_list_empty_catalog(self, temp_dir):
        assert list_saved_networks(model_dir=temp_dir) == []

    def test_delete_network(self, simple_network, temp_dir):
        save_network(simple_network, "net_1", model_dir=temp_dir)

        assert delete_network("net_1", model_dir=temp_dir) is True
        assert load_network("net_1", model_dir=temp_dir) is None
        assert delete_network("net_1", model_dir=temp_dir) is False

    def test_model_dir_from_environment(self, simple_network, temp_dir, monkeypatch):
        monkeypatch.setenv('NW_MODEL_DIR', temp_dir)
        assert save_network(simple_network, "env_net")
        assert get_network_metadata("env_net", model_dir=temp_dir) is not None


@pytest.mark.unit
class TestValidation:
    """Test rejection of bad arguments."""

    @pytest.mark.parametrize('network_id', ["", None, 42])
    def test_invalid_network_id(self, simple_network, temp_dir, network_id):
        assert save_network(simple_network, network_id, model_dir=temp_dir) is False
        assert load_network(network_id, model_dir=temp_dir) is None
        assert delete_network(network_id, model_dir=temp_dir) is False
        assert get_network_metadata(network_id, model_dir=temp_dir) is None

    def test_negative_rms_error(self, simple_network, temp_dir):
        assert save_network(simple_network, "net_1", model_dir=temp_dir,
                            rms_error=-0.1) is False
        assert get_network_metadata("net_1", model_dir=temp_dir) is None

    def test_store_raises_on_negative_rms(self, simple_network, temp_dir):
        store = NetworkStore(os.path.join(temp_dir, DB_NAME))
        with pytest.raises(ValueError):
            store.save_network_to_db(simple_network, "net_1", rms_error=-1.0)

    def test_corrupt_blob(self, simple_network, temp_dir):
        save_network(simple_network, "net_1", model_dir=temp_dir)
        conn = sqlite3.connect(os.path.join(temp_dir, DB_NAME))
        try:
            conn.execute("UPDATE networks SET network_data = ?", (b'garbage',))
            conn.commit()
        finally:
            conn.close()

        assert load_network("net_1", model_dir=temp_dir) is None


@pytest.mark.unit
class TestCleanup:
    """Test deletion of old catalog entries."""

    def test_delete_old_networks(self, layered, temp_dir):
        save_network(layered([1, 1]), "old", model_dir=temp_dir)
        save_network(layered([1, 1]), "new", model_dir=temp_dir)
        age_entry(temp_dir, "old", 5)

        deleted = delete_old_networks(days=2, model_dir=temp_dir)

        assert deleted == 1
        remaining = [n['network_id'] for n in list_saved_networks(model_dir=temp_dir)]
        assert remaining == ["new"]

    def test_delete_old_networks_keeps_recent(self, simple_network, temp_dir):
        save_network(simple_network, "net_1", model_dir=temp_dir)
        assert delete_old_networks(days=1, model_dir=temp_dir) == 0

    def test_delete_old_networks_rejects_negative_days(self, temp_dir):
        with pytest.raises(ValueError, match="non-negative"):
            delete_old_networks(days=-1, model_dir=temp_dir)
