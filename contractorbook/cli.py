"""Command line interface for ``contractorbook``.

Typer app with ``rich`` output. The root callback loads a local ``.env``
(without overriding variables already set), configures logging, and builds
one :class:`~contractorbook.service.ContractorBook` for the invoked command.
Async sync cycles run through ``asyncio.run``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, Any, NoReturn

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table
from typer.models import OptionInfo

from .config import AppConfig
from .logging_setup import configure_logging
from .models import ExpenseRecord, JobStatus, ReceiptItem, UserRole
from .service import ContractorBook
from .sync import CycleOutcome

console = Console()

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Contractor expense book with offline-first spreadsheet sync.",
)
jobs_app = typer.Typer(no_args_is_help=True, help="Manage jobs (Admin only for changes).")
expenses_app = typer.Typer(no_args_is_help=True, help="Record and inspect expenses.")
endpoint_app = typer.Typer(no_args_is_help=True, help="Configure the spreadsheet webhook.")
sync_app = typer.Typer(no_args_is_help=True, help="Run sync cycles by hand.")
app.add_typer(jobs_app, name="jobs")
app.add_typer(expenses_app, name="expenses")
app.add_typer(endpoint_app, name="endpoint")
app.add_typer(sync_app, name="sync")

# Module-level option objects (ruff B008).
IMAGE_OPTION: OptionInfo = typer.Option(
    ...,
    "--image",
    help="Path to a receipt photo.",
    dir_okay=False,
    file_okay=True,
    exists=True,
    readable=True,
)
ITEM_OPTION: OptionInfo = typer.Option(
    None,
    "--item",
    help="Line item as 'description=amount' or 'description=amount@job-id'. Repeatable.",
)


# ---- helpers -----------------------------------------------------------------


def _book(ctx: typer.Context) -> ContractorBook:
    return ctx.obj


def _fail(msg: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {msg}")
    raise typer.Exit(1)


def _with_autopush[T](book: ContractorBook, action: Callable[[], T]) -> T:
    """Run a local write inside an event loop so its scheduled push runs too."""

    async def _run() -> T:
        result = action()
        await book.sync.wait_scheduled()
        return result

    return asyncio.run(_run())


def _parse_item(raw: str) -> ReceiptItem:
    desc, sep, rest = raw.rpartition("=")
    if not sep or not desc.strip():
        raise typer.BadParameter(f"expected 'description=amount', got {raw!r}")
    amount, _, job_id = rest.partition("@")
    try:
        value = float(amount)
    except ValueError as e:
        raise typer.BadParameter(f"amount is not a number in {raw!r}") from e
    return ReceiptItem(description=desc.strip(), amount=value, job_id=job_id or None)


def _print_push(report: Any) -> None:
    if report is None:
        console.print("[yellow]Sync requires an Admin login; nothing pushed.[/yellow]")
        return
    if report.outcome is CycleOutcome.COMPLETED:
        console.print(f"Pushed {report.succeeded}/{report.attempted} record(s).")
        if report.failed_ids:
            console.print(f"[yellow]Still pending:[/yellow] {', '.join(report.failed_ids)}")
    else:
        console.print(f"Push: {report.outcome.value.replace('_', ' ')}")


def _print_pull(report: Any) -> None:
    if report is None:
        console.print("Endpoint cleared; working offline.")
        return
    if report.outcome is CycleOutcome.COMPLETED:
        console.print(
            f"Pulled {report.jobs} job(s) and {report.expenses} expense(s); "
            f"{report.carried} local change(s) kept."
        )
    else:
        console.print(f"Pull: {report.outcome.value.replace('_', ' ')}")


def _expense_table(records: list[ExpenseRecord], job_names: dict[str, str]) -> Table:
    table = Table(title="Expenses")
    table.add_column("ID")
    table.add_column("Date")
    table.add_column("Merchant")
    table.add_column("Job")
    table.add_column("Category")
    table.add_column("Total", justify="right")
    table.add_column("Synced")
    for e in records:
        table.add_row(
            e.id,
            e.date,
            e.merchant_name,
            job_names.get(e.job_id, e.job_id or "-"),
            e.category,
            f"{e.currency}{e.total_amount:.2f}",
            "yes" if e.is_synced else "no",
        )
    return table


# ---- root ----------------------------------------------------------------------


@app.callback()
def _root(
    ctx: typer.Context,
    *,
    database_url: str | None = typer.Option(
        None, help="Override CONTRACTORBOOK_DATABASE_URL."
    ),
) -> None:
    """Load ``.env``, configure logging, and open the local book."""

    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()
    book = ContractorBook(config=AppConfig.from_env(database_url=database_url))
    ctx.call_on_close(book.close)
    ctx.obj = book


@app.command("login")
def login_cmd(
    ctx: typer.Context,
    role: Annotated[UserRole, typer.Argument(help="Admin or User.", case_sensitive=False)],
) -> None:
    """Sign in with one of the built-in accounts."""

    account = _book(ctx).login(role)
    console.print(f"Signed in as [bold]{account.name}[/bold] ({account.role.value}).")


@app.command("logout")
def logout_cmd(ctx: typer.Context) -> None:
    _book(ctx).logout()
    console.print("Signed out.")


@app.command("status")
def status_cmd(ctx: typer.Context) -> None:
    """Show the signed-in user, endpoint and pending changes."""

    book = _book(ctx)
    st = book.status()
    user = book.user
    who = f"{user.name} ({user.role.value})" if user else "not signed in"
    console.print(f"User: {who}")
    console.print(f"Endpoint: {book.store.endpoint_url() or 'not set'}")
    console.print(f"Sync: {'online' if st.endpoint_configured else 'offline'}")
    console.print(f"Pending changes: {st.pending}")


# ---- jobs ------------------------------------------------------------------------


@jobs_app.command("list")
def jobs_list_cmd(ctx: typer.Context) -> None:
    from .reports import job_budget_summary

    book = _book(ctx)
    jobs = book.store.jobs()
    lines = {ln.job_id: ln for ln in job_budget_summary(jobs, book.store.expenses())}
    table = Table(title="Jobs")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Client")
    table.add_column("Status")
    table.add_column("Budget", justify="right")
    table.add_column("Spent", justify="right")
    table.add_column("Synced")
    for j in jobs:
        ln = lines[j.id]
        spent = f"{ln.spent:.2f}" if not ln.over_budget else f"[red]{ln.spent:.2f}[/red]"
        table.add_row(
            j.id,
            j.name,
            j.client,
            j.status.value,
            f"{j.budget:.2f}",
            spent,
            "yes" if j.is_synced else "no",
        )
    console.print(table)


@jobs_app.command("add")
def jobs_add_cmd(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Job name.")],
    *,
    client: str = typer.Option("", help="Client name."),
    address: str = typer.Option("", help="Site address."),
    contact: str = typer.Option("", help="Contact person."),
    phone: str = typer.Option("", help="Contact phone."),
    email: str = typer.Option("", help="Contact email."),
    budget: float = typer.Option(0.0, min=0, help="Budget amount."),
) -> None:
    """Create a job (Admin only)."""

    book = _book(ctx)
    job = book.new_job(
        name,
        client=client,
        address=address,
        contact_name=contact,
        phone=phone,
        email=email,
        budget=budget,
    )
    saved = _with_autopush(book, lambda: book.save_job(job))
    if saved is None:
        _fail("only an Admin can add jobs")
    console.print(f"Added job [bold]{saved.id}[/bold] {saved.name}.")


@jobs_app.command("edit")
def jobs_edit_cmd(
    ctx: typer.Context,
    job_id: Annotated[str, typer.Argument(help="Job id.")],
    *,
    name: str | None = typer.Option(None, help="New name."),
    client: str | None = typer.Option(None, help="Client name."),
    address: str | None = typer.Option(None, help="Site address."),
    contact: str | None = typer.Option(None, help="Contact person."),
    phone: str | None = typer.Option(None, help="Contact phone."),
    email: str | None = typer.Option(None, help="Contact email."),
    budget: float | None = typer.Option(None, min=0, help="Budget amount."),
    status: JobStatus | None = typer.Option(None, case_sensitive=False, help="Job status."),
) -> None:
    """Change fields of a job (Admin only). Omitted options stay as they are."""

    changes: dict[str, Any] = {
        k: v
        for k, v in {
            "name": name.strip() if name is not None else None,
            "client": client,
            "address": address,
            "contact_name": contact,
            "phone": phone,
            "email": email,
            "budget": budget,
            "status": status,
        }.items()
        if v is not None
    }
    if not changes:
        _fail("nothing to change")
    book = _book(ctx)
    saved = _with_autopush(book, lambda: book.update_job(job_id, **changes))
    if saved is None:
        _fail(f"job {job_id} not updated (unknown id or not an Admin)")
    console.print(f"Updated job [bold]{saved.id}[/bold] {saved.name}.")


@jobs_app.command("delete")
def jobs_delete_cmd(
    ctx: typer.Context, job_id: Annotated[str, typer.Argument(help="Job id.")]
) -> None:
    """Delete a job locally (Admin only; the spreadsheet keeps its rows)."""

    if not _book(ctx).delete_job(job_id):
        _fail(f"job {job_id} not deleted (unknown id or not an Admin)")
    console.print(f"Deleted job {job_id}.")


# ---- expenses --------------------------------------------------------------------


@expenses_app.command("list")
def expenses_list_cmd(
    ctx: typer.Context,
    *,
    query: str = typer.Option("", "--query", "-q", help="Merchant, job name or notes."),
    job: str | None = typer.Option(None, "--job", help="Only this primary job id."),
) -> None:
    from .reports import search_expenses, total_spent

    book = _book(ctx)
    jobs = book.store.jobs()
    found = search_expenses(book.store.expenses(), jobs, query, job_id=job)
    console.print(_expense_table(found, {j.id: j.name for j in jobs}))
    console.print(f"Total: {total_spent(found):.2f} across {len(found)} expense(s)")


@expenses_app.command("add")
def expenses_add_cmd(
    ctx: typer.Context,
    merchant: Annotated[str, typer.Argument(help="Merchant name.")],
    total: Annotated[float, typer.Argument(help="Total amount.")],
    *,
    job: str = typer.Option("", "--job", help="Primary job id."),
    date: str = typer.Option("", help="Purchase date (YYYY-MM-DD)."),
    category: str = typer.Option("Other", help="Expense category."),
    tax: float = typer.Option(0.0, help="Tax amount."),
    notes: str = typer.Option("", help="Free-form notes."),
    item: list[str] | None = ITEM_OPTION,
    sync: bool = typer.Option(True, help="Push after saving when online."),
) -> None:
    """Record an expense by hand."""

    book = _book(ctx)
    # Without explicit items the whole total is one line on the primary job.
    items = tuple(_parse_item(raw) for raw in (item or [])) or (
        ReceiptItem(description=merchant, amount=total),
    )
    record = ExpenseRecord(
        job_id=job,
        merchant_name=merchant,
        date=date,
        total_amount=total,
        tax_amount=tax,
        category=category,
        notes=notes,
        items=items,
    )
    saved = _with_autopush(book, lambda: book.save_expense(record, sync=sync))
    if saved is None:
        _fail("sign in first")
    console.print(f"Saved expense [bold]{saved.id}[/bold] ({saved.merchant_name}).")


@expenses_app.command("edit")
def expenses_edit_cmd(
    ctx: typer.Context,
    record_id: Annotated[str, typer.Argument(help="Expense id.")],
    *,
    merchant: str | None = typer.Option(None, help="Merchant name."),
    total: float | None = typer.Option(None, help="Total amount."),
    job: str | None = typer.Option(None, "--job", help="Primary job id."),
    date: str | None = typer.Option(None, help="Purchase date (YYYY-MM-DD)."),
    category: str | None = typer.Option(None, help="Expense category."),
    tax: float | None = typer.Option(None, help="Tax amount."),
    notes: str | None = typer.Option(None, help="Free-form notes."),
    item: list[str] | None = ITEM_OPTION,
    sync: bool = typer.Option(True, help="Push after saving when online."),
) -> None:
    """Change fields of an expense. Any --item replaces all line items."""

    changes: dict[str, Any] = {
        k: v
        for k, v in {
            "merchant_name": merchant,
            "total_amount": total,
            "job_id": job,
            "date": date,
            "category": category,
            "tax_amount": tax,
            "notes": notes,
        }.items()
        if v is not None
    }
    if item:
        changes["items"] = tuple(_parse_item(raw) for raw in item)
    if not changes:
        _fail("nothing to change")
    book = _book(ctx)
    saved = _with_autopush(book, lambda: book.update_expense(record_id, sync=sync, **changes))
    if saved is None:
        _fail(f"expense {record_id} not updated (unknown id or not signed in)")
    console.print(f"Updated expense [bold]{saved.id}[/bold] ({saved.merchant_name}).")


@expenses_app.command("delete")
def expenses_delete_cmd(
    ctx: typer.Context, record_id: Annotated[str, typer.Argument(help="Expense id.")]
) -> None:
    """Delete an expense locally (Admin only; the spreadsheet keeps its rows)."""

    if not _book(ctx).delete_expense(record_id):
        _fail(f"expense {record_id} not deleted (unknown id or not an Admin)")
    console.print(f"Deleted expense {record_id}.")


@expenses_app.command("reconcile")
def expenses_reconcile_cmd(
    ctx: typer.Context, record_id: Annotated[str, typer.Argument(help="Expense id.")]
) -> None:
    """Set an expense total to the sum of its line items."""

    book = _book(ctx)
    saved = _with_autopush(book, lambda: book.reconcile_expense(record_id))
    if saved is None:
        _fail(f"expense {record_id} not found (or not signed in)")
    console.print(f"Total for {saved.id} is now {saved.total_amount:.2f}.")


@app.command("scan")
def scan_cmd(
    ctx: typer.Context,
    image: Annotated[Path, IMAGE_OPTION],
    *,
    job: str | None = typer.Option(None, "--job", help="Primary job id (else suggested)."),
    save: bool = typer.Option(True, help="Save the extracted expense."),
) -> None:
    """Extract a receipt photo with OpenAI and save it as an expense."""

    import mimetypes
    import os

    from .errors import ReceiptExtractionError
    from .extraction import extract_receipt

    if not os.getenv("OPENAI_API_KEY"):
        _fail("OPENAI_API_KEY is not set in the environment.")

    book = _book(ctx)
    mime = mimetypes.guess_type(image.name)[0] or "image/jpeg"
    try:
        data = extract_receipt(
            image.read_bytes(),
            mime_type=mime,
            categories=book.store.categories(),
            jobs=book.store.jobs(),
        )
    except ReceiptExtractionError as e:
        _fail(str(e))

    record = book.new_expense_from_extraction(data, job_id=job, image_url=str(image))
    console.print(
        f"{record.merchant_name} {record.date} {record.currency}{record.total_amount:.2f} "
        f"({record.category}) {len(record.items)} item(s)"
    )
    if not save:
        return
    saved = _with_autopush(book, lambda: book.save_expense(record))
    if saved is None:
        _fail("sign in first")
    console.print(f"Saved expense [bold]{saved.id}[/bold].")


# ---- endpoint and sync -------------------------------------------------------------


@endpoint_app.command("set")
def endpoint_set_cmd(
    ctx: typer.Context,
    url: Annotated[str, typer.Argument(help="Web-app URL, or '' to go offline.")],
) -> None:
    """Store the webhook URL and pull from it."""

    from .errors import EndpointConfigError

    book = _book(ctx)
    if not book.is_admin:
        _fail("only an Admin can change the endpoint")
    try:
        report = asyncio.run(book.set_endpoint(url))
    except EndpointConfigError as e:
        _fail(str(e))
    _print_pull(report)


@endpoint_app.command("script")
def endpoint_script_cmd(
    output: Path | None = typer.Option(
        None, "--output", "-o", dir_okay=False, help="Write to this file instead of stdout."
    ),
) -> None:
    """Print the Apps Script to deploy as the spreadsheet web app."""

    from .wire import webhook_script

    source = webhook_script()
    if output is None:
        typer.echo(source, nl=False)
        return
    output.write_text(source, encoding="utf-8")
    console.print(f"Wrote {output}. Deploy it as a web app and run `endpoint set <url>`.")


@endpoint_app.command("test")
def endpoint_test_cmd(ctx: typer.Context) -> None:
    if asyncio.run(_book(ctx).test_connection()):
        console.print("[green]Connection OK.[/green]")
    else:
        _fail("connection test failed")


@sync_app.command("push")
def sync_push_cmd(ctx: typer.Context) -> None:
    _print_push(asyncio.run(_book(ctx).sync_now()))


@sync_app.command("pull")
def sync_pull_cmd(ctx: typer.Context) -> None:
    _print_pull(asyncio.run(_book(ctx).refresh()))


if __name__ == "__main__":  # pragma: no cover
    app()
