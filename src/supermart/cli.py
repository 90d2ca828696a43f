"""Command-line entry points for the Supermart toolkit.

All orchestration in this module is limited to argparse wiring and
translating command-line arguments into calls on the workflow layer. Keeping
the CLI thin ensures the same parser configuration can be reused by tests,
scripts, or any alternative front-end that wants to expose the package
capabilities.
"""

from __future__ import annotations

import argparse
import json
import random
import sys
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, TextIO

from . import core_logic, log
from .master_data import create_master_workbook
from .validation import CHECKS, Finding, ValidationReport


DETAILS_PER_CHECK = 5


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[Optional[core_logic.RuntimeContext], argparse.Namespace], int]
    needs_context: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="supermart-cli",
        description="Batch tools for the Supermart inventory and sales database.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to $SUPERMART_CONFIG or an upward search).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    setup_specs = register_setup_commands(subparsers)
    seed_specs = register_seed_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*setup_specs.values(), *seed_specs.values(), *read_specs.values()])


def register_setup_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare database and master-data setup commands."""
    specs = {
        "init-db": register_init_db_command(subparsers),
        "create-workbook": register_create_workbook_command(subparsers),
        "import-master-data": register_import_master_data_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_seed_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare the data generation and reconciliation commands."""
    specs = {
        "seed-customers": register_seed_customers_command(subparsers),
        "distribute-inventory": register_distribute_inventory_command(subparsers),
        "seed-sales": register_seed_sales_command(subparsers),
        "sync-customers": register_sync_customers_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only commands."""
    specs = {
        "validate": register_validate_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_seed_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--seed", type=int, default=None, help="Random seed for reproducible runs.")


def register_init_db_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``init-db``."""
    name = "init-db"
    help_text = "Create the collection indexes."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init_db)


def register_create_workbook_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``create-workbook``."""
    name = "create-workbook"
    help_text = "Write an empty master-data workbook template."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, required=True)
        parser.add_argument("--system-user", default=None, help="Pre-fill a system administrator with this email.")
        parser.add_argument("--force", action="store_true", help="Overwrite an existing workbook.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(
        name=name,
        help_text=help_text,
        register=registrar,
        execute=run_create_workbook,
        needs_context=False,
    )


def register_import_master_data_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``import-master-data``."""
    name = "import-master-data"
    help_text = "Upsert branches, categories, products, and users from a workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--workbook", type=Path, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_import_master_data)


def register_seed_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``seed-customers``."""
    name = "seed-customers"
    help_text = "Replace customers with generated tiered customers."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_seed_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_seed_customers)


def register_distribute_inventory_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``distribute-inventory``."""
    name = "distribute-inventory"
    help_text = "Replace branch stock with a distribution that meets the value targets."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_seed_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_distribute_inventory)


def register_seed_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``seed-sales``."""
    name = "seed-sales"
    help_text = "Generate sales transactions across all branches."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--days", type=int, default=90)
        parser.add_argument("--count", type=int, default=1750, help="Sale attempts across all branches.")
        parser.add_argument("--append", action="store_true", help="Keep existing sales and continue numbering.")
        parser.add_argument("--commit-stock", action="store_true", help="Persist the stock sold.")
        parser.add_argument("--walk-in-rate", type=float, default=0.0)
        _add_seed_argument(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_seed_sales)


def register_sync_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sync-customers``."""
    name = "sync-customers"
    help_text = "Rebuild customer purchase aggregates from recorded sales."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sync_customers)


def register_validate_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``validate``."""
    name = "validate"
    help_text = "Check stored data for arithmetic and referential consistency."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_validate)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(config_path)


def dispatch_command(
    context: Optional[core_logic.RuntimeContext],
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_rng(args: argparse.Namespace) -> random.Random:
    """Build the random source for a generation command."""
    return random.Random(getattr(args, "seed", None))


def translate_seed_sales(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into keyword arguments for sales generation."""
    return {
        "days": args.days,
        "total_sales": args.count,
        "append": args.append,
        "commit_stock": args.commit_stock,
        "walk_in_rate": args.walk_in_rate,
    }


def run_init_db(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Create indexes on every managed collection."""
    core_logic.initialize_database(context)
    return 0


def run_create_workbook(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Write the master-data template; needs no database."""
    create_master_workbook(args.output, system_user_email=args.system_user, overwrite=args.force)
    return 0


def run_import_master_data(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    core_logic.import_master_data(context, args.workbook)
    return 0


def run_seed_customers(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    created = core_logic.seed_customers(context, translate_rng(args))
    print(f"Created {sum(created.values())} customers: " + ", ".join(f"{tier}={count}" for tier, count in created.items()))
    return 0


def run_distribute_inventory(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    allocations = core_logic.distribute_inventory(context, translate_rng(args))
    codes = {branch.branch_id: branch.code for branch in core_logic.list_branches(context)}
    for allocation in allocations:
        print(
            f"{codes.get(allocation.branch_id, allocation.branch_id)}: "
            f"{allocation.products_stocked} products, {allocation.total_units} units, "
            f"value {allocation.total_value:.2f} ({allocation.achievement}% of target)"
        )
    return 0


def run_seed_sales(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    summary = core_logic.generate_sales(context, translate_rng(args), **translate_seed_sales(args))
    for stats in summary.branches:
        print(
            f"{stats.branch_code}: {stats.inserted}/{stats.requested} sales, "
            f"revenue {stats.revenue:.2f}, profit {stats.profit:.2f}, "
            f"payments {dict(stats.payment_methods)}"
        )
    print(f"Total: {summary.inserted} sales, revenue {summary.revenue:.2f}, profit {summary.profit:.2f}")
    return 0


def run_sync_customers(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    updated = core_logic.sync_customers(context)
    print(f"Updated {updated} customers")
    return 0


def run_validate(context: Optional[core_logic.RuntimeContext], args: argparse.Namespace) -> int:
    """Run the consistency checks and report; the exit code reflects failures."""
    report = core_logic.run_validation(context)
    settings = context.settings
    render_report(
        report,
        sys.stdout,
        title=f"{settings.chain_name} consistency report",
        currency=settings.currency,
    )
    return report.exit_code


def _format_details(finding: Finding) -> str:
    return json.dumps(dict(finding.details), default=str, sort_keys=True)


def render_report(
    report: ValidationReport,
    stream: TextIO,
    *,
    limit: int = DETAILS_PER_CHECK,
    title: Optional[str] = None,
    currency: str = "",
) -> None:
    """Print the report grouped by check, with at most ``limit`` detailed
    findings per check. Branch amounts are suffixed with ``currency``."""
    if title:
        print(title, file=stream)
        print("=" * len(title), file=stream)
    unit = f" {currency}" if currency else ""
    passed: Dict[str, List[str]] = defaultdict(list)
    findings: Dict[str, List[tuple[str, Finding]]] = defaultdict(list)
    for check, message in report.passed:
        passed[check].append(message)
    for finding in report.failed:
        findings[finding.check].append(("FAIL", finding))
    for finding in report.warnings:
        findings[finding.check].append(("WARN", finding))

    for check, _ in CHECKS:
        print(f"\n== {check} ==", file=stream)
        for message in passed[check]:
            print(f"  PASS {message}", file=stream)
        shown = findings[check][:limit]
        for label, finding in shown:
            print(f"  {label} {finding.message}", file=stream)
            if finding.details:
                print(f"       {_format_details(finding)}", file=stream)
        hidden = len(findings[check]) - len(shown)
        if hidden > 0:
            print(f"  ... {hidden} more findings not shown", file=stream)

    revenue = report.summary.get("revenue")
    if revenue:
        print("\n== Branch summary ==", file=stream)
        distribution = report.summary.get("distribution", {}).get("branches", {})
        for code, figures in revenue["branches"].items():
            spread = distribution.get(code, {})
            print(
                f"  {code}: {figures['sales']} sales, revenue {figures['revenue']:.2f}{unit}, "
                f"profit {figures['profit']:.2f}{unit}, customers {spread.get('customers', 0)}, "
                f"stocked items {spread.get('stocked_items', 0)}",
                file=stream,
            )

    counts = report.counts()
    print(
        f"\nPassed: {counts['passed']}  Warnings: {counts['warnings']}  Failed: {counts['failed']}",
        file=stream,
    )


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.MissingPrerequisiteError):
        log.error("%s", error)
        return 1
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, (FileNotFoundError, KeyError)):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    context: Optional[core_logic.RuntimeContext] = None
    try:
        if command_table[args.command].needs_context:
            context = load_runtime_context(getattr(args, "config", None))
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
    finally:
        if context is not None:
            core_logic.close_context(context)
