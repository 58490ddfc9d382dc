"""Tests for the command line interface."""

import pytest
from typer.testing import CliRunner

from household_split.cli import app
from household_split.db import Database

runner = CliRunner()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    """Point the CLI at a temporary database and a signed-in user."""
    path = tmp_path / "cli.db"
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOUSEHOLD_USER_UID", "uid-1")
    monkeypatch.setenv("HOUSEHOLD_USER_EMAIL", "you@x.com")
    monkeypatch.setenv("HOUSEHOLD_DEFAULT_PARTNER_EMAIL", "partner@y.com")
    monkeypatch.setenv("HOUSEHOLD_DATABASE_PATH", str(path))
    return path


def stored_ids(path) -> list[str]:
    db = Database(path)
    try:
        return [e.id for e in db.snapshot(["partner@y.com__you@x.com"])]
    finally:
        db.close()


def add_groceries(*extra: str):
    return runner.invoke(
        app,
        ["add", "-d", "Groceries", "-a", "25000", "--date", "2024-05-10", *extra],
    )


def test_add_and_balance(db_path):
    result = add_groceries()
    assert result.exit_code == 0, result.output
    assert "Added expense" in result.output

    result = runner.invoke(app, ["balance"])

    assert result.exit_code == 0, result.output
    assert "Partner owes you" in result.output
    assert "+$12.500" in result.output


def test_partner_pays(db_path):
    add_groceries("--payer", "partner")

    result = runner.invoke(app, ["balance"])

    assert "You owe partner" in result.output
    assert "-$12.500" in result.output


def test_list_shows_expenses(db_path):
    add_groceries()

    result = runner.invoke(app, ["list", "--search", "groc"])

    assert result.exit_code == 0, result.output
    assert "Groceries" in result.output
    assert "$25.000" in result.output


def test_invalid_amount(db_path):
    result = runner.invoke(app, ["add", "-d", "Groceries", "-a", "lots"])

    assert result.exit_code == 1
    assert "Amount is not a number" in result.output
    assert stored_ids(db_path) == []


def test_settle_then_even(db_path):
    add_groceries()
    (record_id,) = stored_ids(db_path)

    result = runner.invoke(app, ["settle", record_id[:8]])
    assert result.exit_code == 0, result.output

    result = runner.invoke(app, ["balance"])
    assert "Even" in result.output


def test_delete_cancelled(db_path):
    add_groceries()
    (record_id,) = stored_ids(db_path)

    result = runner.invoke(app, ["delete", record_id[:8]], input="n\n")

    assert result.exit_code == 0, result.output
    assert "Cancelled." in result.output
    assert stored_ids(db_path) == [record_id]


def test_delete_confirmed(db_path):
    add_groceries()
    (record_id,) = stored_ids(db_path)

    result = runner.invoke(app, ["delete", record_id[:8]], input="y\n")

    assert result.exit_code == 0, result.output
    assert stored_ids(db_path) == []


def test_unknown_id(db_path):
    result = runner.invoke(app, ["settle", "nope"])

    assert result.exit_code == 1
    assert "No expense matching id 'nope'" in result.output


def test_partner_command(db_path):
    result = runner.invoke(app, ["partner", "Other@Z.com"])

    assert result.exit_code == 0, result.output
    assert "Partner set to Other@Z.com" in result.output
    assert "other@z.com__you@x.com" in result.output


def test_requires_partner(db_path, monkeypatch):
    monkeypatch.setenv("HOUSEHOLD_DEFAULT_PARTNER_EMAIL", "")

    result = add_groceries()

    assert result.exit_code == 1
    assert "No partner set" in result.output


def test_unknown_cost_center(db_path):
    result = add_groceries("--cost-center", "Garage")

    assert result.exit_code == 1
    assert "Unknown cost center 'Garage'" in result.output
    assert stored_ids(db_path) == []


def test_partner_greets_by_display_name(db_path, monkeypatch):
    monkeypatch.setenv("HOUSEHOLD_USER_DISPLAY_NAME", "Juan")

    result = runner.invoke(app, ["partner"])

    assert result.exit_code == 0, result.output
    assert "Hi, Juan" in result.output
    assert "Partner: partner@y.com" in result.output
