"""
Tests for the storage port: the Table helpers and the in-memory and
CSV-directory backends.
"""

import asyncio

import pytest

from household_ledger.models.finance import Transaction
from household_ledger.services.storage import (
    CsvDirectoryTableStorage,
    InMemoryTableStorage,
    Table,
    TableNotFoundError,
    validate_table_name,
)


class TestTable:
    """Tests for the in-memory Table helpers."""

    def test_from_values_skips_blank_lines(self):
        """Test blank lines are dropped and short lines padded."""
        table = Table.from_values("ACCOUNT", [
            ["ID", "BALANCE", "SORT_ORDER"],
            ["1", "100"],
            ["", "", ""],
            [],
            ["2", "50", "1"],
        ])
        assert table.rows == [
            {"ID": "1", "BALANCE": "100", "SORT_ORDER": ""},
            {"ID": "2", "BALANCE": "50", "SORT_ORDER": "1"},
        ]

    def test_upsert_keeps_unknown_columns(self, make_transaction):
        """Test an update merges into the row and preserves columns we do not model."""
        table = Table(
            name="TRANSACTION",
            header=["ID", "TRANSACTION_TYPE", "PROJECT_TYPE", "AMOUNT", "TAG_IDS"],
            rows=[{
                "ID": "1",
                "TRANSACTION_TYPE": "expense",
                "PROJECT_TYPE": "actual",
                "AMOUNT": "100",
                "TAG_IDS": "4,5",
            }],
        )
        record = Transaction.from_row(table.rows[0])
        table.upsert(record.model_copy(update={"amount": 250}))

        assert len(table.rows) == 1
        assert table.rows[0]["AMOUNT"] == "250"
        assert table.rows[0]["TAG_IDS"] == "4,5"

    def test_upsert_appends_new_rows(self, make_transaction):
        """Test upserting an unknown ID appends it and adds missing columns."""
        table = Table.empty("TRANSACTION")
        table.upsert(make_transaction("9"))

        assert table.find("9") is not None
        assert "TRANDATE_TO" in table.header

    def test_records_skips_unparsable_rows(self):
        """Test a row with an invalid enum is skipped, not raised."""
        table = Table(
            name="TRANSACTION",
            header=["ID", "TRANSACTION_TYPE", "PROJECT_TYPE"],
            rows=[
                {"ID": "1", "TRANSACTION_TYPE": "income", "PROJECT_TYPE": "actual"},
                {"ID": "2", "TRANSACTION_TYPE": "bogus", "PROJECT_TYPE": "actual"},
            ],
        )
        records = table.records(Transaction)

        assert [r.id for r in records] == ["1"]
        assert len(table.rows) == 2

    def test_next_id_ignores_non_numeric_ids(self):
        """Test next_id is one past the largest numeric ID."""
        table = Table(name="ACCOUNT", header=["ID"], rows=[{"ID": "3"}, {"ID": "x"}, {"ID": "11"}])
        assert table.next_id() == "12"
        assert Table(name="ACCOUNT").next_id() == "1"

    def test_remove_where_counts(self):
        """Test remove_where reports how many rows it dropped."""
        table = Table(name="ACCOUNT", header=["ID"], rows=[{"ID": "1"}, {"ID": "2"}, {"ID": "3"}])
        removed = table.remove_where(lambda row: row["ID"] != "2")

        assert removed == 2
        assert table.rows == [{"ID": "2"}]


class TestTableNames:
    """Tests for table name validation."""

    def test_normalizes_case_and_extension(self):
        """Test names are upper-cased and a .csv suffix dropped."""
        assert validate_table_name("transaction_monthly.csv") == "TRANSACTION_MONTHLY"

    @pytest.mark.parametrize("name", ["", "../ACCOUNT", "ACCOUNT1", "A B"])
    def test_rejects_unsafe_names(self, name):
        """Test names outside letters and underscores are rejected."""
        with pytest.raises(TableNotFoundError):
            validate_table_name(name)


class TestInMemoryStorage:
    """Tests for the in-memory backend."""

    def test_missing_table_is_empty(self):
        """Test reading an unknown table returns an empty table."""
        table = asyncio.run(InMemoryTableStorage().read_table("ACCOUNT"))
        assert table.name == "ACCOUNT"
        assert table.rows == []

    def test_reads_are_copies(self):
        """Test mutating a read table does not change storage."""
        storage = InMemoryTableStorage({
            "ACCOUNT": Table(name="ACCOUNT", header=["ID"], rows=[{"ID": "1"}]),
        })
        table = asyncio.run(storage.read_table("ACCOUNT"))
        table.rows.clear()

        assert len(asyncio.run(storage.read_table("ACCOUNT")).rows) == 1


class TestCsvDirectoryStorage:
    """Tests for the CSV directory backend."""

    def test_write_then_read(self, tmp_path):
        """Test a table survives a write/read cycle, including quoted commas."""
        storage = CsvDirectoryTableStorage(data_dir=str(tmp_path), encoding="utf-8")
        table = Table(
            name="TRANSACTION",
            header=["ID", "COMPLETED_PLANDATE", "MEMO"],
            rows=[{"ID": "1", "COMPLETED_PLANDATE": "2024-01-10,2024-02-10", "MEMO": "rent"}],
        )

        asyncio.run(storage.write_table("TRANSACTION", table))
        loaded = asyncio.run(storage.read_table("TRANSACTION"))

        assert (tmp_path / "TRANSACTION.csv").exists()
        assert loaded.header == table.header
        assert loaded.rows == table.rows

    def test_missing_file_is_empty_table(self, tmp_path):
        """Test a table without a file reads as empty."""
        storage = CsvDirectoryTableStorage(data_dir=str(tmp_path), encoding="utf-8")
        table = asyncio.run(storage.read_table("ACCOUNT"))
        assert table.rows == []
        assert table.header == []

    def test_no_temp_file_left_behind(self, tmp_path):
        """Test the atomic write leaves only the final file."""
        storage = CsvDirectoryTableStorage(data_dir=str(tmp_path), encoding="utf-8")
        asyncio.run(storage.write_table("ACCOUNT", Table(name="ACCOUNT", header=["ID"], rows=[{"ID": "1"}])))

        assert sorted(p.name for p in tmp_path.iterdir()) == ["ACCOUNT.csv"]
