import json

import pytest
from typer.testing import CliRunner

from spending_tagger.cli import app
from spending_tagger.storage.connection import DatabaseManager


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()

@pytest.fixture
def db_args(tmp_path):
    return ["--db", str(tmp_path / "tagger.db")]

@pytest.fixture
def transactions_file(tmp_path, problem_transactions):
    path = tmp_path / "transactions.json"
    path.write_text(json.dumps([t.to_record() for t in problem_transactions]), encoding="utf-8")
    return path


def _tags(path):
    return {record["id"]: record["tag"] for record in json.loads(path.read_text(encoding="utf-8"))}


@pytest.mark.integration
class TestMappingCommands:

    def test_add_then_export(self, runner, db_args):
        # Act
        added = runner.invoke(app, db_args + ["mapping", "add", "Other", "Credit card", "Other"])
        exported = runner.invoke(app, db_args + ["mapping", "export"])

        # Assert
        assert added.exit_code == 0
        assert exported.exit_code == 0
        assert json.loads(exported.stdout) == {"other": {"credit card": "Other"}}

    def test_remove_missing_entry_fails(self, runner, db_args):
        result = runner.invoke(app, db_args + ["mapping", "remove", "nope", "nothing"])

        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_import_file(self, runner, db_args, tmp_path):
        # Arrange
        payload = tmp_path / "mapping.json"
        payload.write_text(json.dumps({"Gift": {"Charity": "Gift"}}), encoding="utf-8")

        # Act
        result = runner.invoke(app, db_args + ["mapping", "import", str(payload)])

        # Assert
        assert result.exit_code == 0
        assert "Imported 1 mapping entries" in result.stdout

    def test_import_malformed_file_fails(self, runner, db_args, tmp_path):
        payload = tmp_path / "mapping.json"
        payload.write_text(json.dumps(["not", "a", "mapping"]), encoding="utf-8")

        result = runner.invoke(app, db_args + ["mapping", "import", str(payload)])

        assert result.exit_code == 1

    def test_list_empty(self, runner, db_args):
        result = runner.invoke(app, db_args + ["mapping", "list"])

        assert result.exit_code == 0
        assert "No mapping entries" in result.stdout


@pytest.mark.integration
class TestTransactionCommands:

    def test_fix_rewrites_file(self, runner, db_args, transactions_file, expected_fixed_tags):
        # Act
        result = runner.invoke(app, db_args + ["fix", str(transactions_file)])

        # Assert
        assert result.exit_code == 0
        assert "Fixed 10 transactions" in result.stdout
        assert _tags(transactions_file) == expected_fixed_tags

    def test_fix_twice_is_a_no_op(self, runner, db_args, transactions_file):
        runner.invoke(app, db_args + ["fix", str(transactions_file)])

        result = runner.invoke(app, db_args + ["fix", str(transactions_file)])

        assert result.exit_code == 0
        assert "already match" in result.stdout

    def test_dry_run_leaves_file_untouched(self, runner, db_args, transactions_file):
        before = transactions_file.read_text(encoding="utf-8")

        result = runner.invoke(app, db_args + ["fix", str(transactions_file), "--dry-run"])

        assert result.exit_code == 0
        assert "DRY RUN" in result.stdout
        assert transactions_file.read_text(encoding="utf-8") == before

    def test_classify_writes_output(self, runner, db_args, tmp_path):
        # Arrange
        source = tmp_path / "new.json"
        source.write_text(json.dumps([{"id": "1", "description": "ALBERT HEIJN 1234", "amount": "-23.12"}]))
        output = tmp_path / "tagged.json"

        # Act
        result = runner.invoke(app, db_args + ["classify", str(source), "--output", str(output)])

        # Assert
        assert result.exit_code == 0
        record = json.loads(output.read_text(encoding="utf-8"))[0]
        assert record["tag"] == "Other"
        assert record["category"] == "Groceries & Household"
        assert record["amount"] == -2312

    def test_manual_tag_is_pinned(self, runner, db_args, transactions_file):
        # Arrange
        tagged = runner.invoke(app, db_args + ["tag", str(transactions_file), "2", "Investments"])

        # Act
        runner.invoke(app, db_args + ["fix", str(transactions_file)])

        # Assert
        assert tagged.exit_code == 0
        assert _tags(transactions_file)["2"] == "Investments"

    def test_tag_unknown_id_fails(self, runner, db_args, transactions_file):
        result = runner.invoke(app, db_args + ["tag", str(transactions_file), "999", "Gift"])

        assert result.exit_code == 1

    def test_invalid_transaction_file_fails(self, runner, db_args, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("{not json", encoding="utf-8")

        result = runner.invoke(app, db_args + ["fix", str(bad)])

        assert result.exit_code == 1


@pytest.mark.integration
class TestRuleCommands:

    def test_rules_list_shows_chain(self, runner, db_args):
        result = runner.invoke(app, db_args + ["rules", "list"])

        assert result.exit_code == 0
        assert "SpecialRuleTier" in result.stdout

    def test_extract_then_reset(self, runner, db_args):
        # Act
        extracted = runner.invoke(app, db_args + ["rules", "extract"])
        reset = runner.invoke(app, db_args + ["rules", "reset", "--yes"])
        listed = runner.invoke(app, db_args + ["mapping", "list"])

        # Assert
        assert extracted.exit_code == 0
        assert "User mapping now has" in extracted.stdout
        assert reset.exit_code == 0
        assert "No mapping entries" in listed.stdout

    def test_learned_commands(self, runner, db_args, tmp_path):
        # Arrange
        path = tmp_path / "subs.json"
        path.write_text(json.dumps([
            {"id": "n1", "description": "Netflix subscription payment", "amount": -1299},
            {"id": "s1", "description": "Spotify premium subscription", "amount": -999},
        ]))
        runner.invoke(app, db_args + ["tag", str(path), "n1", "Subscriptions"])
        runner.invoke(app, db_args + ["tag", str(path), "s1", "Subscriptions"])

        # Act
        listed = runner.invoke(app, db_args + ["learned", "list"])
        stats = runner.invoke(app, db_args + ["learned", "stats"])

        # Assert
        assert listed.exit_code == 0
        assert "No learned rules yet" not in listed.stdout
        assert stats.exit_code == 0
        assert "Manual assignments: 2" in stats.stdout
        assert "Subscriptions: 1" in stats.stdout


@pytest.mark.integration
class TestDatabaseLifecycle:

    def test_connection_closed_after_command(self, runner, db_args, mocker):
        # Arrange
        close_spy = mocker.spy(DatabaseManager, "close")

        # Act
        result = runner.invoke(app, db_args + ["mapping", "add", "Gift", "Charity", "Gift"])

        # Assert
        assert result.exit_code == 0
        assert close_spy.call_count == 1

    def test_connection_closed_after_failure(self, runner, db_args, mocker):
        close_spy = mocker.spy(DatabaseManager, "close")

        result = runner.invoke(app, db_args + ["mapping", "remove", "nope", "nothing"])

        assert result.exit_code == 1
        assert close_spy.call_count == 1
