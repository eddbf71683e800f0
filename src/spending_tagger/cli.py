import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn

from spending_tagger.storage.connection import DatabaseConfig, DatabaseManager
from spending_tagger.storage.sqlite_store import SQLiteKeyValueStore
from spending_tagger.storage.transaction_file import load_transactions, save_transactions
from spending_tagger.registry.rule_registry import RuleRegistry
from spending_tagger.services.tagging_service import TaggingService
from spending_tagger.utils.amounts import format_minor_units

app = typer.Typer(
    name="spending-tagger",
    help="Tag bank transactions with explainable, overridable rules",
    add_completion=False,
)
mapping_app = typer.Typer(help="Manage user category → tag mappings")
rules_app = typer.Typer(help="Inspect and merge classification rules")
learned_app = typer.Typer(help="Inspect rules learned from manual tags")
app.add_typer(mapping_app, name="mapping")
app.add_typer(rules_app, name="rules")
app.add_typer(learned_app, name="learned")

console = Console()


class State:
    verbose: bool = False
    service: Optional[TaggingService] = None


state = State()


def _fail(e: Exception) -> None:
    console.print(f"[bold red]Error:[/bold red] {e}")
    if state.verbose:
        console.print_exception()
    raise typer.Exit(code=1)


def _tag_style(tag: Optional[str]) -> str:
    return "dim" if tag in (None, "", "Other", "Untagged") else "bold"


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
    db: Path = typer.Option(
        Path("data/tagger.db"),
        "--db",
        help="SQLite database holding mappings and learned rules",
    ),
):
    """
    Spending Tagger - Classify, fix and learn transaction tags.
    """
    state.verbose = verbose
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    db_manager = DatabaseManager(DatabaseConfig(db))
    ctx.call_on_close(db_manager.close)
    registry = RuleRegistry(store=SQLiteKeyValueStore(db_manager))
    state.service = TaggingService(registry)


@app.command(name="classify")
def classify(
    filepath: Path = typer.Argument(
        ...,
        help="JSON array of transactions",
        exists=True,
        file_okay=True,
        dir_okay=False
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Write tagged transactions here instead of only printing them",
    ),
):
    """
    Tag transactions from a JSON file.

    Examples:
        spending-tagger classify transactions.json
        spending-tagger classify transactions.json --output tagged.json
    """
    try:
        transactions = load_transactions(filepath)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Classifying transactions...", total=None)
            state.service.classify_many(transactions)
            progress.update(task, completed=True)

        table = Table(title=f"Classified {len(transactions)} transactions")
        table.add_column("ID", style="cyan")
        table.add_column("Description", style="white", max_width=40)
        table.add_column("Amount", justify="right")
        table.add_column("Tag")
        table.add_column("Confidence", justify="right", style="dim")
        table.add_column("Reason", style="dim", max_width=50)

        for txn in transactions:
            amount_color = "green" if txn.amount >= 0 else "red"
            table.add_row(
                txn.id,
                txn.description[:40],
                f"[{amount_color}]{format_minor_units(txn.amount)}[/{amount_color}]",
                f"[{_tag_style(txn.tag)}]{txn.tag}[/{_tag_style(txn.tag)}]",
                f"{txn.confidence:.2f}" if txn.confidence is not None else "",
                txn.classification_reason or "",
            )
        console.print(table)

        if output:
            save_transactions(transactions, output)
            console.print(f"[bold green]✓ Wrote {len(transactions)} transactions to {output}[/bold green]")

    except Exception as e:
        _fail(e)


@app.command(name="fix")
def fix(
    filepath: Path = typer.Argument(
        ...,
        help="JSON array of transactions, updated in place",
        exists=True,
        file_okay=True,
        dir_okay=False
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Preview without writing the file",
    ),
):
    """
    Re-classify existing transactions against the current rules.

    Transactions with a manual override are never changed.

    Examples:
        spending-tagger fix transactions.json --dry-run
        spending-tagger fix transactions.json
    """
    try:
        transactions = load_transactions(filepath)
        report = state.service.fix_all(transactions)
        _print_fix_report(report)

        if dry_run:
            console.print("[yellow]DRY RUN - No changes made[/yellow]")
        elif report.total_fixed:
            save_transactions(transactions, filepath)
            console.print(f"[bold green]✓ Fixed {report.total_fixed} transactions[/bold green]")
        else:
            console.print("[green]✓ All tags already match the current rules[/green]")

    except Exception as e:
        _fail(e)


def _print_fix_report(report) -> None:
    console.print(Panel.fit(
        f"[bold]Processed:[/bold] {report.total_processed}\n"
        f"[bold]Fixed:[/bold] {report.total_fixed}\n"
        f"[bold]Unchanged:[/bold] {report.unchanged}\n"
        f"[bold]Pinned (skipped):[/bold] {report.skipped_pinned}",
        title="Re-classification",
        border_style="cyan"
    ))

    if report.transitions:
        table = Table(show_header=True, box=None, padding=(0, 2))
        table.add_column("Transition", style="cyan")
        table.add_column("Count", justify="right")
        for label, count in report.transition_counts.items():
            table.add_row(label, str(count))
        console.print(table)


@app.command(name="tag")
def tag(
    filepath: Path = typer.Argument(
        ...,
        help="JSON array of transactions, updated in place",
        exists=True,
        file_okay=True,
        dir_okay=False
    ),
    transaction_id: str = typer.Argument(..., help="ID of the transaction to tag"),
    new_tag: str = typer.Argument(..., help="Tag to assign"),
    reason: str = typer.Option(
        "Manual tag change",
        "--reason", "-r",
        help="Note stored in the override history",
    ),
):
    """
    Set a tag by hand; the transaction is pinned and the change is learned.

    Examples:
        spending-tagger tag transactions.json 42 Subscriptions
    """
    try:
        transactions = load_transactions(filepath)
        target = next((t for t in transactions if t.id == transaction_id), None)
        if target is None:
            raise KeyError(f"No transaction with id '{transaction_id}' in {filepath}")

        old_tag = target.tag or "Untagged"
        state.service.update_tag(target, new_tag, reason)
        save_transactions(transactions, filepath)

        console.print(f"[bold green]✓[/bold green] {target.id}: {old_tag} → [bold]{target.tag}[/bold]")
        if state.verbose:
            console.print(f"[dim]→ {len(state.service.learner.manual_assignments)} manual assignments recorded[/dim]")

    except Exception as e:
        _fail(e)


# ═══════════════════════════════════════════════════════════
# MAPPING - user category/subcategory → tag entries
# ═══════════════════════════════════════════════════════════

@mapping_app.command(name="add")
def mapping_add(
    category: str = typer.Argument(...),
    subcategory: str = typer.Argument(...),
    new_tag: str = typer.Argument(..., metavar="TAG"),
):
    """Add or overwrite a mapping entry."""
    try:
        state.service.registry.add_mapping(category, subcategory, new_tag)
        console.print(f"[bold green]✓[/bold green] {category}/{subcategory} → {new_tag}")
    except Exception as e:
        _fail(e)


@mapping_app.command(name="remove")
def mapping_remove(
    category: str = typer.Argument(...),
    subcategory: str = typer.Argument(...),
):
    """Remove a mapping entry."""
    try:
        state.service.registry.remove_mapping(category, subcategory)
        console.print(f"[bold green]✓[/bold green] Removed {category}/{subcategory}")
    except Exception as e:
        _fail(e)


@mapping_app.command(name="list")
def mapping_list(
    effective: bool = typer.Option(
        False,
        "--effective",
        help="Include the system default mapping",
    ),
):
    """Show the mapping table."""
    try:
        registry = state.service.registry
        mapping = registry.effective_mapping() if effective else registry.export_mapping()

        if not mapping:
            console.print("[yellow]No mapping entries[/yellow]")
            return

        table = Table(title="Effective mapping" if effective else "User mapping")
        table.add_column("Category", style="cyan")
        table.add_column("Subcategory", style="magenta")
        table.add_column("Tag", style="bold")
        for category, subcategories in sorted(mapping.items()):
            for subcategory, mapped_tag in sorted(subcategories.items()):
                table.add_row(category, subcategory, mapped_tag)
        console.print(table)
    except Exception as e:
        _fail(e)


@mapping_app.command(name="export")
def mapping_export(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="File to write"),
):
    """Export the user mapping as JSON."""
    try:
        payload = json.dumps(state.service.registry.export_mapping(), indent=2, ensure_ascii=False)
        if output:
            output.write_text(payload + "\n", encoding="utf-8")
            console.print(f"[bold green]✓ Exported mapping to {output}[/bold green]")
        else:
            print(payload)
    except Exception as e:
        _fail(e)


@mapping_app.command(name="import")
def mapping_import(
    filepath: Path = typer.Argument(..., exists=True, file_okay=True, dir_okay=False),
    reset: bool = typer.Option(
        False,
        "--reset",
        help="Replace the user mapping instead of merging",
    ),
):
    """Import a {category: {subcategory: tag}} JSON file."""
    try:
        payload = json.loads(filepath.read_text(encoding="utf-8"))
        count = state.service.registry.import_mapping(payload, reset=reset)
        console.print(f"[bold green]✓ Imported {count} mapping entries[/bold green]")
    except Exception as e:
        _fail(e)


# ═══════════════════════════════════════════════════════════
# RULES - declarative rules and the tier chain
# ═══════════════════════════════════════════════════════════

@rules_app.command(name="list")
def rules_list():
    """Show the tier chain and every declarative rule."""
    try:
        service = state.service
        console.print(Panel(
            service.classifier.get_rule_chain_info(),
            title="Tier chain",
            border_style="cyan"
        ))

        table = Table(show_header=True)
        table.add_column("Tier", justify="right")
        table.add_column("ID", style="cyan")
        table.add_column("Type")
        table.add_column("Source", style="dim")
        table.add_column("Result")
        table.add_column("Confidence", justify="right")
        for rule in service.registry.rules():
            result = rule.result.tag or f"{rule.result.category}/{rule.result.subcategory}"
            table.add_row(
                str(rule.tier),
                rule.id,
                rule.type.value,
                rule.source.value,
                result,
                f"{rule.confidence:.2f}",
            )
        console.print(table)
    except Exception as e:
        _fail(e)


@rules_app.command(name="extract")
def rules_extract(
    fix_file: Optional[Path] = typer.Option(
        None,
        "--fix",
        help="Also re-classify this JSON transaction file with the merged rules",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
):
    """Merge the built-in rules into the user mapping (user entries win)."""
    try:
        service = state.service
        if fix_file is None:
            mapping = service.registry.extract_and_merge_all_rules()
            entries = sum(len(s) for s in mapping.values())
            console.print(f"[bold green]✓ User mapping now has {entries} entries[/bold green]")
            return

        transactions = load_transactions(fix_file)
        report = service.extract_and_fix(transactions)
        _print_fix_report(report)
        if report.total_fixed:
            save_transactions(transactions, fix_file)
    except Exception as e:
        _fail(e)


@rules_app.command(name="reset")
def rules_reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
):
    """Drop all user mappings, custom rules and learned rules."""
    try:
        if not yes and not typer.confirm("Remove all user and learned rules?"):
            raise typer.Abort()
        state.service.registry.reset_to_defaults()
        console.print("[bold green]✓ Reset to system defaults[/bold green]")
    except typer.Abort:
        raise
    except Exception as e:
        _fail(e)


# ═══════════════════════════════════════════════════════════
# LEARNED - rules synthesized from manual tags
# ═══════════════════════════════════════════════════════════

@learned_app.command(name="list")
def learned_list():
    """Show learned rules."""
    try:
        rules = state.service.registry.learned_rules
        if not rules:
            console.print("[yellow]No learned rules yet[/yellow]")
            return

        table = Table(show_header=True)
        table.add_column("Tag", style="bold")
        table.add_column("Conditions")
        table.add_column("Confidence", justify="right")
        table.add_column("Assignments", justify="right")
        table.add_column("Used", justify="right")
        table.add_column("Last used", style="dim")
        for rule in rules:
            table.add_row(
                rule.tag,
                ", ".join(f"{c.type.value}:{c.pattern}" for c in rule.conditions),
                f"{rule.confidence:.2f}",
                str(rule.assignments_count),
                str(rule.usage_count),
                rule.last_used or "never",
            )
        console.print(table)
    except Exception as e:
        _fail(e)


@learned_app.command(name="analyze")
def learned_analyze():
    """Re-synthesize learned rules from all manual assignments."""
    try:
        created = state.service.learner.analyze_and_create_rules()
        console.print(f"[bold green]✓ {len(created)} learned rules created or updated[/bold green]")
    except Exception as e:
        _fail(e)


@learned_app.command(name="stats")
def learned_stats():
    """Show learning statistics."""
    try:
        stats = state.service.learner.statistics()
        lines = [
            f"[bold]Rules:[/bold] {stats.total_rules}",
            f"[bold]Manual assignments:[/bold] {stats.total_assignments}",
        ]
        for rule_tag, count in sorted(stats.rules_by_tag.items()):
            lines.append(f"  • {rule_tag}: {count}")
        if stats.most_used_rules:
            lines.append("\n[bold]Most used:[/bold]")
            for rule in stats.most_used_rules:
                lines.append(f"  • {rule.tag} ({rule.usage_count}x)")
        console.print(Panel("\n".join(lines), title="Learning", border_style="cyan"))
    except Exception as e:
        _fail(e)


def cli_main():
    """Entry point for the CLI"""
    app()


if __name__ == "__main__":
    cli_main()
