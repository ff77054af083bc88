"""CLI for Aftercare — recovery guides, checklists, symptoms and notes."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TypeVar

import click
from pydantic import ValidationError

from aftercare import __version__
from aftercare.catalog import Catalog, ItemType, load_catalog
from aftercare.config import (
    DEFAULT_CONFIG_FILENAME,
    AftercareConfig,
    ConfigError,
    default_config,
    load_config,
)
from aftercare.core.logging import configure_logging
from aftercare.identity import AuthError
from aftercare.models import NoteCategory, NoteChanges, NoteDraft, SymptomDraft
from aftercare.session import Session, end_session, start_session
from aftercare.stats import progress_percentage, summarize
from aftercare.store import WriteFailure
from aftercare.symptoms import NORMAL_SYMPTOMS, WARNING_SYMPTOMS, symptom_label

T = TypeVar("T")

_NOTE_CATEGORIES = [c.value for c in NoteCategory]


def _resolve_config(config_path: Path | None, data_dir: Path | None) -> AftercareConfig:
    """Load the config file, falling back to defaults when the default path is absent."""
    if config_path is not None:
        config = load_config(config_path)
    elif Path(DEFAULT_CONFIG_FILENAME).exists():
        config = load_config(Path(DEFAULT_CONFIG_FILENAME))
    else:
        config = default_config()
    if data_dir is not None:
        config.data_dir = data_dir
    return config


def _run(ctx: click.Context, action: Callable[[Session], Awaitable[T]]) -> T:
    """Start a session, run *action* against it, and always tear it down."""
    config: AftercareConfig = ctx.obj["config"]

    async def _main() -> T:
        session = await start_session(config)
        try:
            return await action(session)
        finally:
            await end_session()

    try:
        return asyncio.run(_main())
    except (WriteFailure, AuthError) as exc:
        raise click.ClickException(str(exc)) from exc


def _catalog(ctx: click.Context) -> Catalog:
    return ctx.obj["catalog"]


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    envvar="AFTERCARE_CONFIG",
    default=None,
    help=f"Path to {DEFAULT_CONFIG_FILENAME}",
)
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Override the profile data directory",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None, data_dir: Path | None) -> None:
    """Aftercare — your surgical recovery companion."""
    try:
        config = _resolve_config(config_path, data_dir)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    log_root = Path(config.logging.log_root) if config.logging.log_root else None
    configure_logging(level=config.logging.level, fmt=config.logging.format, log_root=log_root)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["catalog"] = load_catalog()


# ---------------------------------------------------------------------------
# Guides and checklist
# ---------------------------------------------------------------------------


@cli.group()
def guides() -> None:
    """Browse aftercare guides."""


@guides.command("list")
@click.option("--category", default=None, help="Only guides in this category")
@click.option("--search", default="", help="Match text in title or description")
@click.pass_context
def guides_list(ctx: click.Context, category: str | None, search: str) -> None:
    """List available guides."""
    results = _catalog(ctx).search(search, category)
    if not results:
        click.echo("No guides found. Try adjusting your search terms or category filter.")
        return

    click.echo(f"{'ID':<24} {'Category':<28} {'Read':<8} {'Title'}")
    click.echo("-" * 80)
    for brochure in results:
        click.echo(
            f"{brochure.id:<24} {brochure.category:<28} "
            f"{brochure.estimated_read_time:<8} {brochure.title}"
        )


@guides.command("show")
@click.argument("guide_id")
@click.pass_context
def guides_show(ctx: click.Context, guide_id: str) -> None:
    """Show a guide with its checklist state."""
    brochure = _catalog(ctx).get(guide_id)
    if brochure is None:
        raise click.ClickException(f"Unknown guide: {guide_id}")

    async def _show(session: Session) -> frozenset[str]:
        return session.store.checked_items

    checked = _run(ctx, _show)
    click.echo(f"{brochure.title} (v{brochure.version}, {brochure.estimated_read_time})")
    click.echo(brochure.description)
    click.echo(f"Progress: {progress_percentage(brochure, checked):.0f}%")
    for section in brochure.sections:
        click.echo("")
        click.echo(section.title)
        for item in section.items:
            if item.checkable:
                marker = "[x]" if item.id in checked else "[ ]"
            else:
                marker = " ! " if item.type is ItemType.WARNING else " - "
            click.echo(f"  {marker} {item.text}  ({item.id})")


def _set_checked(ctx: click.Context, item_id: str, checked: bool) -> None:
    items = (b.find_item(item_id) for b in _catalog(ctx).all())
    if not any(item is not None and item.checkable for item in items):
        raise click.ClickException(f"Unknown checkable item: {item_id}")

    async def _toggle(session: Session) -> None:
        await session.store.toggle_checked(item_id, checked)

    _run(ctx, _toggle)
    click.echo(f"{'Checked' if checked else 'Unchecked'} {item_id}")


@cli.command()
@click.argument("item_id")
@click.pass_context
def check(ctx: click.Context, item_id: str) -> None:
    """Mark a checklist item as done."""
    _set_checked(ctx, item_id, True)


@cli.command()
@click.argument("item_id")
@click.pass_context
def uncheck(ctx: click.Context, item_id: str) -> None:
    """Mark a checklist item as not done."""
    _set_checked(ctx, item_id, False)


@cli.command()
@click.argument("guide_id")
@click.pass_context
def progress(ctx: click.Context, guide_id: str) -> None:
    """Show checklist progress for a guide."""
    brochure = _catalog(ctx).get(guide_id)
    if brochure is None:
        raise click.ClickException(f"Unknown guide: {guide_id}")

    async def _checked(session: Session) -> frozenset[str]:
        return session.store.checked_items

    summary = summarize(brochure, _run(ctx, _checked), [], [])
    click.echo(
        f"{brochure.title}: {summary.completed}/{summary.total_checkable} "
        f"({summary.progress_percentage:.0f}%)"
    )


# ---------------------------------------------------------------------------
# Symptoms
# ---------------------------------------------------------------------------


@cli.group()
def symptoms() -> None:
    """Log and review symptoms."""


@symptoms.command("catalog")
def symptoms_catalog() -> None:
    """List known symptom tags."""
    click.echo("Warning signs (contact your doctor):")
    for tag, label in WARNING_SYMPTOMS.items():
        click.echo(f"  {tag:<18} {label}")
    click.echo("Common symptoms:")
    for tag, label in NORMAL_SYMPTOMS.items():
        click.echo(f"  {tag:<18} {label}")


@symptoms.command("log")
@click.option("-s", "--symptom", "tags", multiple=True, required=True, help="Symptom tag")
@click.option("--severity", type=click.IntRange(1, 10), required=True, help="1 (mild) to 10")
@click.option("--notes", default="", help="Additional details")
@click.pass_context
def symptoms_log(ctx: click.Context, tags: tuple[str, ...], severity: int, notes: str) -> None:
    """Record how you are feeling."""
    try:
        draft = SymptomDraft(symptoms=list(tags), severity=severity, notes=notes)
    except ValidationError as exc:
        raise click.ClickException(str(exc)) from exc

    async def _log(session: Session):
        return await session.store.log_symptom(draft)

    entry = _run(ctx, _log)
    click.echo(f"Logged symptom entry {entry.id}")
    if entry.needs_attention:
        click.echo(
            "Attention: consider contacting your healthcare provider if symptoms are severe."
        )


@symptoms.command("list")
@click.option("--limit", type=int, default=10, show_default=True)
@click.pass_context
def symptoms_list(ctx: click.Context, limit: int) -> None:
    """Show recent symptom entries, newest first."""

    async def _list(session: Session):
        return session.store.symptoms

    entries = _run(ctx, _list)[:limit]
    if not entries:
        click.echo("No symptoms logged yet.")
        return
    for entry in entries:
        flag = "!" if entry.needs_attention else " "
        labels = ", ".join(symptom_label(t) for t in entry.symptoms)
        stamp = entry.date.astimezone().strftime("%Y-%m-%d %H:%M")
        click.echo(f"{flag} {stamp}  severity {entry.severity:>2}  {labels}")
        if entry.notes:
            click.echo(f"    {entry.notes}")


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@cli.group()
def notes() -> None:
    """Keep questions and observations for your care team."""


@notes.command("list")
@click.option("--category", type=click.Choice(_NOTE_CATEGORIES), default=None)
@click.pass_context
def notes_list(ctx: click.Context, category: str | None) -> None:
    """List notes, most recently updated first."""

    async def _list(session: Session):
        return session.store.notes

    items = [n for n in _run(ctx, _list) if category is None or n.category == category]
    if not items:
        click.echo("No notes yet.")
        return
    for note in items:
        stamp = note.updated_at.astimezone().strftime("%Y-%m-%d %H:%M")
        click.echo(f"[{note.id}] {note.title} ({note.category.value}, {stamp})")
        click.echo(f"    {note.content}")


@notes.command("add")
@click.argument("title")
@click.argument("content")
@click.option("--category", type=click.Choice(_NOTE_CATEGORIES), default="general")
@click.pass_context
def notes_add(ctx: click.Context, title: str, content: str, category: str) -> None:
    """Add a note."""
    if not title.strip() or not content.strip():
        raise click.ClickException("Title and content must not be empty")
    draft = NoteDraft(title=title, content=content, category=NoteCategory(category))

    async def _add(session: Session):
        return await session.store.add_note(draft)

    note = _run(ctx, _add)
    click.echo(f"Added note {note.id}")


@notes.command("edit")
@click.argument("note_id")
@click.option("--title", default=None)
@click.option("--content", default=None)
@click.option("--category", type=click.Choice(_NOTE_CATEGORIES), default=None)
@click.pass_context
def notes_edit(
    ctx: click.Context,
    note_id: str,
    title: str | None,
    content: str | None,
    category: str | None,
) -> None:
    """Update a note's title, content or category."""
    supplied = {"title": title, "content": content, "category": category}
    changes = NoteChanges(**{k: v for k, v in supplied.items() if v is not None})
    if not changes.fields():
        raise click.UsageError("Nothing to update: pass --title, --content or --category")

    async def _edit(session: Session):
        return await session.store.update_note(note_id, changes)

    note = _run(ctx, _edit)
    click.echo(f"Updated note {note.id}")


@notes.command("delete")
@click.argument("note_id")
@click.pass_context
def notes_delete(ctx: click.Context, note_id: str) -> None:
    """Delete a note."""

    async def _delete(session: Session) -> None:
        await session.store.delete_note(note_id)

    _run(ctx, _delete)
    click.echo(f"Deleted note {note_id}")


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--guide", "guide_id", default=None, help="Guide to report progress for")
@click.pass_context
def dashboard(ctx: click.Context, guide_id: str | None) -> None:
    """Summarise recovery progress, symptoms and notes."""
    brochure = None
    if guide_id is not None:
        brochure = _catalog(ctx).get(guide_id)
        if brochure is None:
            raise click.ClickException(f"Unknown guide: {guide_id}")

    async def _summary(session: Session):
        store = session.store
        for failure in store.load_errors.values():
            click.echo(f"Warning: {failure}", err=True)
        return summarize(brochure, store.checked_items, store.symptoms, store.notes)

    summary = _run(ctx, _summary)
    if brochure is not None:
        click.echo(
            f"Progress ({brochure.title}): {summary.completed}/{summary.total_checkable} "
            f"({summary.progress_percentage:.0f}%)"
        )
    click.echo(f"Symptoms logged today: {summary.todays_symptoms}")
    click.echo(f"Notes: {summary.note_count}")
    if summary.attention:
        click.echo("Recent symptoms needing attention:")
        for entry in summary.attention:
            labels = ", ".join(symptom_label(t) for t in entry.symptoms)
            stamp = entry.date.astimezone().strftime("%Y-%m-%d %H:%M")
            click.echo(f"  {stamp}  severity {entry.severity}  {labels}")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("email")
@click.password_option(confirmation_prompt=False)
@click.pass_context
def login(ctx: click.Context, email: str, password: str) -> None:
    """Sign in to the aftercare service."""

    async def _login(session: Session):
        return await session.identity.login(email, password)

    auth = _run(ctx, _login)
    click.echo(f"Signed in as {auth.user.name} <{auth.user.email}>")


@cli.command()
@click.argument("email")
@click.argument("name")
@click.password_option()
@click.pass_context
def signup(ctx: click.Context, email: str, name: str, password: str) -> None:
    """Create an account."""
    if len(password) < 6:
        raise click.ClickException("Password must be at least 6 characters")

    async def _signup(session: Session):
        return await session.identity.signup(email, password, name)

    auth = _run(ctx, _signup)
    click.echo(f"Welcome, {auth.user.name}")


@cli.command("forgot-password")
@click.argument("email")
@click.pass_context
def forgot_password(ctx: click.Context, email: str) -> None:
    """Request password reset instructions by email."""

    async def _reset(session: Session) -> None:
        await session.identity.request_password_reset(email)

    _run(ctx, _reset)
    click.echo("Check your email for password reset instructions.")


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Sign out and clear the stored token."""

    async def _logout(session: Session) -> None:
        session.logout()

    _run(ctx, _logout)
    click.echo("Signed out.")


@cli.command()
@click.pass_context
def whoami(ctx: click.Context) -> None:
    """Show the signed-in user."""

    async def _whoami(session: Session):
        return session.identity.current_user()

    user = _run(ctx, _whoami)
    if user is None:
        click.echo("Not signed in.")
    else:
        click.echo(f"{user.name} <{user.email}>")
