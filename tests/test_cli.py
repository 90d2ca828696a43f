"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import io
import random
from decimal import Decimal
from pathlib import Path
from unittest.mock import Mock

import openpyxl
import pytest

from supermart import cli, core_logic
from supermart.master_data import SHEET_COLUMNS
from supermart.validation import BASIC_INTEGRITY, STOCK, ValidationReport


SETUP_COMMANDS = {"init-db", "create-workbook", "import-master-data"}
SEED_COMMANDS = {"seed-customers", "distribute-inventory", "seed-sales", "sync-customers"}
READ_COMMANDS = {"validate"}


def _registered_choices(parser: argparse.ArgumentParser) -> set[str]:
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return set(action.choices)
    return set()


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata():
    parser = cli.build_parser()
    assert isinstance(parser, argparse.ArgumentParser)
    assert parser.prog == "supermart-cli"


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    expected = SETUP_COMMANDS | SEED_COMMANDS | READ_COMMANDS
    assert set(command_table) == expected
    assert _registered_choices(cli_parser) == expected


def test_register_groups_return_command_specs(subparsers_action):
    setup = cli.register_setup_commands(subparsers_action)
    seed = cli.register_seed_commands(subparsers_action)
    read = cli.register_read_commands(subparsers_action)

    assert set(setup) == SETUP_COMMANDS
    assert set(seed) == SEED_COMMANDS
    assert set(read) == READ_COMMANDS
    for spec in (*setup.values(), *seed.values(), *read.values()):
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text
        assert callable(spec.execute)


def test_only_create_workbook_runs_without_database():
    parser = cli.build_parser()
    table = cli.configure_subcommands(parser)
    assert [name for name, spec in table.items() if not spec.needs_context] == ["create-workbook"]


def test_seed_sales_defaults():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(["seed-sales"])

    assert cli.translate_seed_sales(args) == {
        "days": 90,
        "total_sales": 1750,
        "append": False,
        "commit_stock": False,
        "walk_in_rate": 0.0,
    }
    assert args.seed is None


def test_seed_sales_flags():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    args = parser.parse_args(
        ["--config", "alt.ini", "seed-sales", "--days", "30", "--count", "200", "--append", "--commit-stock",
         "--walk-in-rate", "0.25", "--seed", "7"]
    )

    assert args.config == Path("alt.ini")
    assert cli.translate_seed_sales(args) == {
        "days": 30,
        "total_sales": 200,
        "append": True,
        "commit_stock": True,
        "walk_in_rate": 0.25,
    }
    assert cli.translate_rng(args).random() == random.Random(7).random()


def test_import_master_data_requires_workbook():
    parser = cli.build_parser()
    cli.configure_subcommands(parser)
    with pytest.raises(SystemExit):
        parser.parse_args(["import-master-data"])


# ---------------------------------------------------------------------------
# Dispatch and command table
# ---------------------------------------------------------------------------


def test_build_command_table_indexes_specs(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    assert list(table) == ["alpha", "beta", "gamma"]


def test_build_command_table_rejects_duplicates(command_spec_iterable):
    with pytest.raises(ValueError):
        cli.build_command_table([*command_spec_iterable, command_spec_iterable[0]])


def test_dispatch_command_requires_known_command(command_spec_iterable):
    table = cli.build_command_table(command_spec_iterable)
    with pytest.raises(KeyError):
        cli.dispatch_command(None, argparse.Namespace(command="delta"), table)
    with pytest.raises(KeyError):
        cli.dispatch_command(None, argparse.Namespace(), table)


def test_dispatch_command_invokes_executor():
    execute = Mock(return_value=0)
    spec = cli.CommandSpec("alpha", "help", lambda action: action.add_parser("alpha"), execute)
    args = argparse.Namespace(command="alpha")
    context = Mock(name="context")

    assert cli.dispatch_command(context, args, {"alpha": spec}) == 0
    execute.assert_called_once_with(context, args)


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def test_run_seed_sales_forwards_arguments(monkeypatch, capsys):
    summary = core_logic.SalesSummary(
        branches=[core_logic.BranchSalesStats(branch_code="MUM", requested=3, inserted=3)]
    )
    generate_sales = Mock(return_value=summary)
    monkeypatch.setattr(core_logic, "generate_sales", generate_sales)
    args = argparse.Namespace(days=5, count=3, append=True, commit_stock=False, walk_in_rate=0.1, seed=1)
    context = Mock(name="context")

    assert cli.run_seed_sales(context, args) == 0

    call = generate_sales.call_args
    assert call.args[0] is context
    assert isinstance(call.args[1], random.Random)
    assert call.kwargs == {"days": 5, "total_sales": 3, "append": True, "commit_stock": False, "walk_in_rate": 0.1}
    assert "MUM: 3/3 sales" in capsys.readouterr().out


def test_run_validate_returns_report_exit_code(monkeypatch, capsys):
    report = ValidationReport()
    report.fail(BASIC_INTEGRITY, "No branches found")
    monkeypatch.setattr(core_logic, "run_validation", Mock(return_value=report))

    assert cli.run_validate(Mock(), argparse.Namespace()) == 1
    assert "FAIL No branches found" in capsys.readouterr().out


def test_render_report_caps_details_per_check():
    report = ValidationReport()
    report.ok(BASIC_INTEGRITY, "Found 3 branches")
    for index in range(8):
        report.warn(STOCK, f"Product SKU-{index}: below reorder level in Mumbai", quantity=index)

    stream = io.StringIO()
    cli.render_report(report, stream)
    output = stream.getvalue()

    assert "PASS Found 3 branches" in output
    assert output.count("WARN Product") == cli.DETAILS_PER_CHECK
    assert "... 3 more findings not shown" in output
    assert '{"quantity": 0}' in output
    assert "Passed: 1  Warnings: 8  Failed: 0" in output


# ---------------------------------------------------------------------------
# Error handling and entry point
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (core_logic.MissingPrerequisiteError("no inventory"), 1),
        (core_logic.MissingReferenceError("unknown branch"), 2),
        (core_logic.InsufficientStockError("short"), 2),
        (core_logic.BusinessRuleViolation("bad row"), 2),
        (FileNotFoundError("config.ini"), 3),
        (KeyError("Database"), 3),
        (RuntimeError("boom"), 1),
    ],
)
def test_handle_cli_error_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


def test_main_create_workbook_needs_no_database(monkeypatch, tmp_path):
    monkeypatch.setattr(cli, "load_runtime_context", Mock(side_effect=AssertionError("database opened")))
    output = tmp_path / "master.xlsx"

    assert cli.main(["create-workbook", "--output", str(output), "--system-user", "root@test.local"]) == 0
    workbook = openpyxl.load_workbook(output)
    assert workbook.sheetnames == list(SHEET_COLUMNS)
    assert workbook["Users"]["A2"].value == "root@test.local"


def test_main_create_workbook_refuses_existing_file(tmp_path):
    output = tmp_path / "master.xlsx"
    output.write_bytes(b"")
    assert cli.main(["create-workbook", "--output", str(output)]) == 1


def test_main_missing_config_exits_with_three(monkeypatch, tmp_path):
    monkeypatch.delenv("SUPERMART_CONFIG", raising=False)
    monkeypatch.chdir(tmp_path)
    assert cli.main(["validate"]) == 3


def test_main_closes_context_after_failure(monkeypatch, runtime_context):
    monkeypatch.setattr(cli, "load_runtime_context", Mock(return_value=runtime_context))
    close_context = Mock()
    monkeypatch.setattr(core_logic, "close_context", close_context)

    assert cli.main(["seed-sales", "--count", "5"]) == 1
    close_context.assert_called_once_with(runtime_context)


def test_main_validate_uses_configured_context(monkeypatch, seeded_context, capsys):
    context, _ = seeded_context
    load = Mock(return_value=context)
    monkeypatch.setattr(cli, "load_runtime_context", load)
    monkeypatch.setattr(core_logic, "close_context", Mock())

    # Branches exist but nothing is stocked yet.
    assert cli.main(["--config", "custom.ini", "validate"]) == 1
    load.assert_called_once_with(Path("custom.ini"))
    output = capsys.readouterr().out
    assert output.startswith("Test Mart consistency report")
    assert "No inventory data found in products" in output


def test_render_report_prints_title_and_currency():
    report = ValidationReport()
    report.summary["revenue"] = {
        "branches": {"MUM": {"sales": 2, "revenue": Decimal("1250.5"), "profit": Decimal("210")}},
    }
    report.summary["distribution"] = {"branches": {"MUM": {"customers": 4, "stocked_items": 12}}}

    stream = io.StringIO()
    cli.render_report(report, stream, title="Test Mart consistency report", currency="INR")
    lines = stream.getvalue().splitlines()

    assert lines[0] == "Test Mart consistency report"
    assert lines[1] == "=" * len(lines[0])
    assert (
        "  MUM: 2 sales, revenue 1250.50 INR, profit 210.00 INR, customers 4, stocked items 12" in lines
    )
