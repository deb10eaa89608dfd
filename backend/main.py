"""
Lead Scout CLI
AI-assisted B2B lead research and outreach drafting

Describe your service, a target area and a target audience. Lead Scout then:
  1. Finds real candidate businesses via web-search grounded AI
  2. Gathers 2-3 verifiable facts + public contacts per lead (with sources)
  3. Drafts a personalized outreach email per lead
  4. Saves every step locally so you can come back to it

Usage:
    python main.py key                        # Enter / replace your API key
    python main.py key --clear                # Forget the stored API key
    python main.py new --description "..." --area "Austin, TX" --audience "independent gyms"
    python main.py new ... --url https://example.com --doc services.md
    python main.py list                       # Saved searches, newest first
    python main.py show <ID>                  # Show a saved search
    python main.py resume <ID>                # Finish unfinished leads of a saved search
    python main.py delete <ID>
    python main.py export <ID> --format xlsx
"""

import argparse
import asyncio
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from tqdm import tqdm

from config import AI_API_KEY
from errors import BriefValidationError, StorageError
from export import export_search_to_csv, export_search_to_excel, format_email
from logging_config import setup_logging
from models import TERMINAL_STATUSES, AppPhase, Lead, LeadStatus
from pipeline_engine import PipelineRun
from session_controller import SessionController
from utils import append_document_text

console = Console()

STATUS_STYLES = {
    LeadStatus.INITIAL: "dim",
    LeadStatus.FETCHING_DETAILS: "yellow",
    LeadStatus.FETCHING_EMAIL: "yellow",
    LeadStatus.COMPLETED: "green",
    LeadStatus.ERROR_DETAILS: "red",
    LeadStatus.ERROR_EMAIL: "red",
}


class ProgressBar:
    """tqdm progress bar driven by pipeline events."""

    def __init__(self):
        self.bar: Optional[tqdm] = None

    async def __call__(self, run: PipelineRun, event: dict) -> None:
        kind = event.get("type")
        if kind == "init":
            self.bar = tqdm(total=event["total"], desc="Enriching leads", unit="lead")
        elif kind == "lead" and self.bar is not None:
            if LeadStatus(event["status"]) in TERMINAL_STATUSES:
                self.bar.update(1)
            self.bar.set_postfix_str(event["lead"]["name"][:30])
        elif kind == "complete" and self.bar is not None:
            self.bar.close()
            self.bar = None


# ──────────────────────────────────────────────
# Rendering
# ──────────────────────────────────────────────

def print_leads_table(leads: list[Lead]):
    table = Table(title="Leads", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Company", style="bold")
    table.add_column("Status")
    table.add_column("Primary Contact")
    table.add_column("Email Subject")

    for i, lead in enumerate(leads, 1):
        style = STATUS_STYLES.get(lead.status, "")
        primary = lead.primary_contact
        table.add_row(
            str(i),
            lead.name,
            f"[{style}]{lead.status.value}[/{style}]" if style else lead.status.value,
            (primary.name or primary.email or "") if primary else "",
            lead.email_subject or "",
        )
    console.print(table)


def print_lead_card(lead: Lead):
    """Full detail for one lead: facts, contacts, email, sources."""
    lines = []
    if lead.error_message:
        lines.append(f"[red]Error:[/red] {lead.error_message}")
    for fact in lead.details or []:
        lines.append(f"• {fact}")
    for contact in lead.contacts or []:
        label = " | ".join(p for p in (contact.name, contact.role, contact.email, contact.phone) if p)
        marker = " [green](primary)[/green]" if contact.is_primary else ""
        lines.append(f"[cyan]Contact:[/cyan] {label}{marker}")
    email = format_email(lead)
    if email:
        lines.append("")
        lines.append(email)
    if lead.grounding_metadata and lead.grounding_metadata.sources:
        lines.append("")
        lines.append("[dim]Sources:[/dim]")
        for uri, title in lead.grounding_metadata.sources:
            lines.append(f"  [dim]{title} | {uri}[/dim]" if title != uri else f"  [dim]{uri}[/dim]")

    style = STATUS_STYLES.get(lead.status, "white")
    console.print(Panel(
        "\n".join(lines) or "[dim]Not researched yet.[/dim]",
        title=f"{lead.name} ({lead.status.value})",
        border_style=style if style != "dim" else "white",
    ))


def print_session(controller: SessionController, details: bool = True):
    brief = controller.brief
    if brief is not None:
        console.print(f"[bold]Search {controller.current_search_id}[/bold]")
        console.print(f"  Service:  {brief.service_description[:120]}")
        console.print(f"  Area:     {brief.target_area}")
        console.print(f"  Audience: {brief.target_audience}")
        if brief.service_url:
            console.print(f"  Website:  {brief.service_url}")
        console.print()
    if controller.leads:
        print_leads_table(controller.leads)
        if details:
            for lead in controller.leads:
                print_lead_card(lead)


def print_status(controller: SessionController):
    if controller.global_error:
        console.print(f"[red]{controller.global_error}[/red]")
    if controller.api_key_error:
        console.print(f"[red]{controller.api_key_error}[/red]")
    if controller.notice:
        console.print(f"[yellow]{controller.notice}[/yellow]")


# ──────────────────────────────────────────────
# Commands
# ──────────────────────────────────────────────

def ensure_credential(controller: SessionController) -> bool:
    """Restore the stored key, or fall back to AI_API_KEY from the environment."""
    if controller.restore_credential():
        return True
    if AI_API_KEY and controller.submit_credential(AI_API_KEY):
        return True
    print_status(controller)
    console.print("[yellow]No usable API key. Run: python main.py key[/yellow]")
    return False


def cmd_key(controller: SessionController, args):
    if args.clear:
        controller.change_credential()
        console.print("[green]Stored API key removed.[/green]")
        return
    api_key = args.api_key or Prompt.ask("API key", password=True)
    if controller.submit_credential(api_key):
        console.print("[green]API key saved.[/green]")
    else:
        print_status(controller)


async def cmd_new(controller: SessionController, args):
    if not ensure_credential(controller):
        return
    description = args.description or ""
    if args.doc:
        try:
            description = append_document_text(description, Path(args.doc))
        except (OSError, ValueError) as e:
            console.print(f"[red]Could not read document: {e}[/red]")
            return

    controller.start_new_project()
    controller.subscribe(ProgressBar())
    try:
        outcome = await controller.submit(description, args.area, args.audience, args.url)
    except BriefValidationError as e:
        console.print("[red]Please fix the following:[/red]")
        for field_name, message in e.field_errors.items():
            console.print(f"  [red]• {field_name}: {message}[/red]")
        return

    print_status(controller)
    if outcome is not None:
        console.print(
            f"\n[green]Done:[/green] {outcome.stats['completed']} completed, "
            f"{outcome.stats['error_details']} failed at details, "
            f"{outcome.stats['error_email']} failed at email"
        )
    if controller.phase in (AppPhase.RESULTS_DISPLAYED, AppPhase.AWAITING_API_KEY) and controller.leads:
        print_session(controller, details=not args.brief)


def cmd_list(controller: SessionController, args):
    searches = controller.saved_searches
    if not searches:
        console.print("[dim]No saved searches yet. Start one with: python main.py new ...[/dim]")
        return

    table = Table(title=f"Saved searches ({len(searches)})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Saved")
    table.add_column("Summary")
    table.add_column("Leads", justify="right")
    table.add_column("Done", justify="center")
    for search in searches:
        completed = sum(1 for lead in search.leads if lead.status == LeadStatus.COMPLETED)
        table.add_row(
            search.id,
            datetime.fromtimestamp(search.timestamp / 1000).strftime("%Y-%m-%d %H:%M"),
            search.summary,
            f"{completed}/{len(search.leads)}",
            "✓" if search.is_fully_processed else "…",
        )
    console.print(table)


def cmd_show(controller: SessionController, args):
    if not controller.load_search(args.id):
        console.print(f"[red]No saved search with id {args.id}[/red]")
        return
    print_session(controller, details=not args.brief)


async def cmd_resume(controller: SessionController, args):
    if not ensure_credential(controller):
        return
    if not controller.load_search(args.id):
        console.print(f"[red]No saved search with id {args.id}[/red]")
        return
    controller.subscribe(ProgressBar())
    outcome = await controller.resume_search()
    if outcome is None and not controller.global_error:
        console.print("[dim]Nothing to resume: every lead is already finished.[/dim]")
    print_status(controller)
    print_session(controller, details=False)


def cmd_delete(controller: SessionController, args):
    if controller.store.get(args.id) is None:
        console.print(f"[red]No saved search with id {args.id}[/red]")
        return
    controller.delete_search(args.id)
    console.print(f"[green]Deleted {args.id}[/green]")


def cmd_export(controller: SessionController, args):
    search = controller.store.get(args.id)
    if search is None:
        console.print(f"[red]No saved search with id {args.id}[/red]")
        return
    output = Path(args.output) if args.output else None
    if args.format == "csv":
        path = export_search_to_csv(search, output)
    else:
        path = export_search_to_excel(search, output)
    console.print(f"[green]Exported to {path}[/green]")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Lead Scout - AI-assisted B2B lead research and outreach drafting"
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    key = sub.add_parser("key", help="Enter, replace or clear the API key")
    key.add_argument("api_key", nargs="?", default=None, help="API key (prompted if omitted)")
    key.add_argument("--clear", action="store_true", help="Forget the stored API key")

    new = sub.add_parser("new", help="Start a new lead search")
    new.add_argument("--description", required=True, help="What your business offers")
    new.add_argument("--area", required=True, help="Target geographic area")
    new.add_argument("--audience", required=True, help="Target audience / business type")
    new.add_argument("--url", default=None, help="Your website (optional, used for tone)")
    new.add_argument("--doc", default=None, help="Text or markdown file appended to the description")
    new.add_argument("--brief", action="store_true", help="Only print the summary table")

    sub.add_parser("list", help="List saved searches")

    show = sub.add_parser("show", help="Show a saved search")
    show.add_argument("id")
    show.add_argument("--brief", action="store_true", help="Only print the summary table")

    resume = sub.add_parser("resume", help="Finish the unfinished leads of a saved search")
    resume.add_argument("id")

    delete = sub.add_parser("delete", help="Delete a saved search")
    delete.add_argument("id")

    export = sub.add_parser("export", help="Export a saved search")
    export.add_argument("id")
    export.add_argument("--format", choices=["csv", "xlsx"], default="xlsx")
    export.add_argument("--output", default=None, help="Output file path")

    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()
    setup_logging(args.log_level)

    try:
        controller = SessionController()
        if args.command == "key":
            cmd_key(controller, args)
        elif args.command == "new":
            asyncio.run(cmd_new(controller, args))
        elif args.command == "list":
            cmd_list(controller, args)
        elif args.command == "show":
            cmd_show(controller, args)
        elif args.command == "resume":
            asyncio.run(cmd_resume(controller, args))
        elif args.command == "delete":
            cmd_delete(controller, args)
        elif args.command == "export":
            cmd_export(controller, args)
    except StorageError as e:
        console.print(f"[red]Local storage error: {e}[/red]")
        raise SystemExit(1)


if __name__ == "__main__":
    main()
