#!/usr/bin/env python3
"""
Initialize the spending tagger database.

Run this script to create the key-value schema and, optionally, seed the
user mapping with the built-in rules.
"""
import sys

from spending_tagger.storage.connection import DatabaseConfig, DatabaseManager
from spending_tagger.storage.sqlite_store import SQLiteKeyValueStore
from spending_tagger.registry.rule_registry import RuleRegistry

def main():
    """initialize the database."""

    config = DatabaseConfig()
    print(f"Initializing database at: {config.db_path}")

    with DatabaseManager(config) as db:
        store = SQLiteKeyValueStore(db)

        if "--extract" in sys.argv[1:]:
            mapping = RuleRegistry(store=store).extract_and_merge_all_rules()
            entries = sum(len(s) for s in mapping.values())
            print(f"✓ Seeded user mapping with {entries} entries")

        keys = store.keys()
        print("✓ Database initialized successfully!")
        print(f"  Stored keys: {', '.join(keys) if keys else '(none)'}")

if __name__ == "__main__":
    main()
