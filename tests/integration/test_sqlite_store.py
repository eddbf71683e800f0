import pytest

from spending_tagger.storage.connection import DatabaseConfig, DatabaseManager
from spending_tagger.storage.sqlite_store import SQLiteKeyValueStore


@pytest.fixture
def test_db(tmp_path):
    """
    Create a real test database.

    Use pytest's tmp_path fixture to create a temporary directory.
    """
    db_manager = DatabaseManager(DatabaseConfig(tmp_path / "tagger.db"))

    yield db_manager

    db_manager.close()

@pytest.fixture
def kv(test_db) -> SQLiteKeyValueStore:
    return SQLiteKeyValueStore(test_db)


@pytest.mark.integration
class TestSQLiteKeyValueStore:
    """Key-value store against a real temp db."""

    def test_set_and_get(self, kv: SQLiteKeyValueStore):
        # Act
        kv.set("tag_mapping", {"other": {"credit card": "Other"}})

        # Assert
        assert kv.get("tag_mapping") == {"other": {"credit card": "Other"}}

    def test_set_overwrites(self, kv: SQLiteKeyValueStore):
        kv.set("learned_rules", [1])
        kv.set("learned_rules", [1, 2])

        assert kv.get("learned_rules") == [1, 2]
        assert kv.keys() == ["learned_rules"]

    def test_missing_key(self, kv: SQLiteKeyValueStore):
        assert kv.get("nothing") is None

    def test_delete(self, kv: SQLiteKeyValueStore):
        kv.set("custom_rules", [])

        assert kv.delete("custom_rules") is True
        assert kv.delete("custom_rules") is False
        assert kv.get("custom_rules") is None

    def test_keys_are_sorted(self, kv: SQLiteKeyValueStore):
        kv.set("tag_mapping", {})
        kv.set("custom_rules", [])
        kv.set("learned_rules", [])

        assert kv.keys() == ["custom_rules", "learned_rules", "tag_mapping"]

    def test_corrupt_value_reads_as_missing(self, kv: SQLiteKeyValueStore, test_db: DatabaseManager):
        # Arrange
        with test_db.transaction() as conn:
            conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)",
                ("tag_mapping", "{broken", "2025-08-01T12:00:00.000+00:00"),
            )

        # Act / Assert
        assert kv.get("tag_mapping") is None

    def test_values_survive_reconnect(self, tmp_path):
        # Arrange
        db_path = tmp_path / "persist.db"
        with DatabaseManager(DatabaseConfig(db_path)) as db:
            SQLiteKeyValueStore(db).set("tag_mapping", {"gift": {"charity": "Gift"}})

        # Act
        with DatabaseManager(DatabaseConfig(db_path)) as db:
            value = SQLiteKeyValueStore(db).get("tag_mapping")

        # Assert
        assert value == {"gift": {"charity": "Gift"}}

    def test_updated_at_is_stamped(self, kv: SQLiteKeyValueStore, test_db: DatabaseManager):
        kv.set("tag_mapping", {})

        row = test_db.get_connection().execute(
            "SELECT updated_at FROM kv_store WHERE key = 'tag_mapping'"
        ).fetchone()

        assert row["updated_at"]
