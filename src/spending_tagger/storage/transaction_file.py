import json
from pathlib import Path
from typing import List

from spending_tagger.domain.models import Transaction


def load_transactions(filepath: Path) -> List[Transaction]:
    """
    Load a JSON array of transaction records.

    Args:
        filepath: Path to the JSON file

    Returns:
        Parsed transactions, in file order

    Raises:
        ValueError: If the file is not a JSON array of valid records
    """
    with open(filepath, encoding="utf-8") as f:
        try:
            records = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"{filepath} is not valid JSON: {e}") from e

    if not isinstance(records, list):
        raise ValueError(f"{filepath} must contain a JSON array of transactions")

    transactions = []
    for index, record in enumerate(records):
        if not isinstance(record, dict):
            raise ValueError(f"Record {index} in {filepath} is not an object")
        transactions.append(Transaction.from_record(record))
    return transactions


def save_transactions(transactions: List[Transaction], filepath: Path) -> None:
    """Write transactions back as a JSON array"""
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)
    with open(filepath, "w", encoding="utf-8") as f:
        json.dump([txn.to_record() for txn in transactions], f, indent=2, ensure_ascii=False)
        f.write("\n")
