"""tiermod CLI: moderate content and administer the moderation store."""

import asyncio
import json

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tiermod import __version__
from tiermod.errors import ModerationError
from tiermod.moderation.models import CATEGORIES, Tier, Workflow
from tiermod.settings import Settings

console = Console()

_ACTION_STYLE = {"allow": "green", "pending": "yellow", "reject": "red"}


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _run(coro):
    """Run a store/pipeline coroutine, turning moderation errors into CLI errors."""
    try:
        return asyncio.run(coro)
    except ModerationError as exc:
        raise click.ClickException(str(exc)) from exc


def _audit(ctx: click.Context, actor: str, action: str, resource_type: str, resource_id: str, details: dict):
    from tiermod.service import build_audit_logger

    build_audit_logger(_settings(ctx)).log_event(actor, action, resource_type, resource_id, details)


@click.group()
@click.version_option(version=__version__)
@click.option("--data-dir", envvar="TIERMOD_DATA_DIR", default=None, help="Directory for config, queue and audit data")
@click.pass_context
def main(ctx: click.Context, data_dir: str | None):
    """tiermod: tiered content moderation.

    Runs content through the keyword blocklist, link safety and AI
    classification tiers, and manages the moderation config, review queue
    and user blocks.
    """
    settings = Settings.from_env()
    if data_dir:
        settings.data_dir = data_dir
    ctx.obj = {"settings": settings}


# ── Check ────────────────────────────────────────────────────────────


@main.command()
@click.argument("text", default="")
@click.option("--workflow", "-w", default=Workflow.COMMUNITY.value, type=click.Choice([w.value for w in Workflow]))
@click.option("--user-id", default="cli", help="User id recorded on queued items")
@click.option("--image", "image_path", type=click.Path(exists=True, dir_okay=False), default=None)
@click.option("--json", "as_json", is_flag=True, help="Print the full result as JSON")
@click.pass_context
def check(ctx: click.Context, text: str, workflow: str, user_id: str, image_path: str | None, as_json: bool):
    """Run TEXT through the moderation tiers and show the verdict."""
    from tiermod.moderation.models import ModerationRequest
    from tiermod.service import build_pipeline

    image = None
    if image_path:
        with open(image_path, "rb") as f:
            image = f.read()

    pipeline = build_pipeline(_settings(ctx))
    request = ModerationRequest(text=text, image=image, user_id=user_id, workflow=workflow)
    result = _run(pipeline.moderate_content(request))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    style = _ACTION_STYLE[result.action.value]
    console.print(f"\n[bold {style}]{result.action.value.upper()}[/] ({result.reason.value})\n")

    if result.tier_flow:
        table = Table(title="Tier flow")
        table.add_column("Tier", style="cyan")
        table.add_column("Verdict")
        table.add_column("Detail")
        for entry in result.tier_flow:
            table.add_row(entry.tier.value, entry.verdict.value, escape(json.dumps(entry.detail)[:80]))
        console.print(table)

    if result.queue_item_id:
        console.print(f"  Queued for review as [bold]{result.queue_item_id}[/]")
    if result.pending_message:
        console.print(f"  [yellow]{result.pending_message}[/]")


# ── Config ───────────────────────────────────────────────────────────


@main.group()
def config():
    """Show and change the moderation config."""


@config.command(name="show")
@click.pass_context
def config_show(ctx: click.Context):
    """Show thresholds and workflow profiles."""
    from tiermod.service import build_store

    cfg = _run(build_store(_settings(ctx)).get_config())

    state = "[green]enabled[/]" if cfg.enabled else "[red]disabled[/]"
    console.print(f"\nModeration is {state}; {len(cfg.blocklist)} blocklist terms\n")

    thresholds = Table(title="Thresholds (violation at severity >=)")
    thresholds.add_column("Category", style="cyan")
    thresholds.add_column("Threshold", justify="right")
    for category in CATEGORIES:
        thresholds.add_row(category, str(cfg.thresholds.get(category)))
    console.print(thresholds)

    workflows = Table(title="Workflows")
    workflows.add_column("Workflow", style="cyan")
    workflows.add_column("Enabled", justify="center")
    workflows.add_column("Tiers")
    workflows.add_column("Actions (t1/t2/t3)")
    for workflow in Workflow:
        profile = cfg.profile(workflow)
        enabled = "[green]Y[/]" if profile.enabled else "[red]N[/]"
        tiers = ", ".join(t.value for t in profile.enabled_tiers) or "-"
        actions = "/".join(profile.action_for(t).value for t in Tier)
        workflows.add_row(workflow.value, enabled, tiers, actions)
    console.print(workflows)


@config.command(name="set-threshold")
@click.argument("category", type=click.Choice(list(CATEGORIES)))
@click.argument("severity", type=click.IntRange(0, 6))
@click.option("--by", "actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def config_set_threshold(ctx: click.Context, category: str, severity: int, actor: str):
    """Set the severity at which CATEGORY counts as a violation."""
    from tiermod.security.audit_log import CONFIG_UPDATED
    from tiermod.service import build_store

    update = {"thresholds": {category: severity}}
    _run(build_store(_settings(ctx)).save_config(update))
    _audit(ctx, actor, CONFIG_UPDATED, "config", "config", update)
    console.print(f"  [green]v[/] {category} threshold set to {severity}")


@config.command(name="set-workflow")
@click.argument("workflow", type=click.Choice([w.value for w in Workflow]))
@click.option("--enabled/--disabled", default=None)
@click.option("--tier1/--no-tier1", default=None)
@click.option("--tier2/--no-tier2", default=None)
@click.option("--tier3/--no-tier3", default=None)
@click.option("--tier1-action", type=click.Choice(["reject", "pending"]), default=None)
@click.option("--tier2-action", type=click.Choice(["reject", "pending"]), default=None)
@click.option("--tier3-action", type=click.Choice(["reject", "pending"]), default=None)
@click.option("--by", "actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def config_set_workflow(ctx: click.Context, workflow: str, actor: str, **settings):
    """Change the tiers a WORKFLOW runs and what a hit in each tier does."""
    from tiermod.security.audit_log import CONFIG_UPDATED
    from tiermod.service import build_store

    profile = {k: v for k, v in settings.items() if v is not None}
    if not profile:
        raise click.UsageError("Nothing to change")
    update = {"workflows": {workflow: profile}}
    _run(build_store(_settings(ctx)).save_config(update))
    _audit(ctx, actor, CONFIG_UPDATED, "config", "config", update)
    console.print(f"  [green]v[/] Updated workflow {workflow}")


# ── Blocklist ────────────────────────────────────────────────────────


@main.group()
def blocklist():
    """Manage the tier 1 keyword blocklist."""


@blocklist.command(name="show")
@click.pass_context
def blocklist_show(ctx: click.Context):
    """List the blocklist terms."""
    from tiermod.service import build_store

    cfg = _run(build_store(_settings(ctx)).get_config())
    if not cfg.blocklist:
        console.print("[yellow]Blocklist is empty.[/]")
        return
    for term in cfg.blocklist:
        console.print(f"  {term}")


@blocklist.command(name="set")
@click.argument("terms", nargs=-1)
@click.option("--file", "-f", "terms_file", type=click.File("r"), default=None, help="Read terms from a file, one per line")
@click.option("--by", "actor", default="cli", help="Actor recorded in the audit log")
@click.pass_context
def blocklist_set(ctx: click.Context, terms: tuple, terms_file, actor: str):
    """Replace the blocklist with TERMS."""
    from tiermod.security.audit_log import BLOCKLIST_UPDATED
    from tiermod.service import build_store

    all_terms = list(terms)
    if terms_file is not None:
        all_terms.extend(line for line in terms_file.read().splitlines() if line.strip())

    cfg = _run(build_store(_settings(ctx)).update_blocklist(all_terms))
    _audit(ctx, actor, BLOCKLIST_UPDATED, "config", "config", {"terms": len(cfg.blocklist)})
    console.print(f"  [green]v[/] Blocklist now has {len(cfg.blocklist)} terms")


# ── Queue ────────────────────────────────────────────────────────────


@main.group()
def queue():
    """Review queued content."""


@queue.command(name="list")
@click.option("--status", "-s", default="pending", type=click.Choice(["pending", "approved", "rejected", "all"]))
@click.option("--limit", "-n", default=50, type=click.IntRange(1, 500))
@click.option("--workflow", "-w", default=None, type=click.Choice([w.value for w in Workflow]))
@click.pass_context
def queue_list(ctx: click.Context, status: str, limit: int, workflow: str | None):
    """List queue items, most recent first."""
    from tiermod.service import build_store

    items = _run(build_store(_settings(ctx)).list_queue(status=status, limit=limit, workflow=workflow))
    if not items:
        console.print("[yellow]Queue is empty.[/]")
        return

    table = Table(title=f"Moderation queue ({len(items)} items)")
    table.add_column("ID", style="cyan")
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Tier")
    table.add_column("User")
    table.add_column("Content")
    for item in items:
        table.add_row(
            item.id,
            item.priority,
            item.status,
            item.triggering_tier,
            item.user_id,
            escape(item.safe_text[:50]),
        )
    console.print(table)


@queue.command(name="resolve")
@click.argument("item_id")
@click.argument("status", type=click.Choice(["approved", "rejected"]))
@click.option("--by", "reviewer", required=True, help="Reviewer id")
@click.option("--notes", default="", help="Review notes")
@click.pass_context
def queue_resolve(ctx: click.Context, item_id: str, status: str, reviewer: str, notes: str):
    """Approve or reject a pending queue item."""
    from tiermod.security.audit_log import QUEUE_RESOLVED
    from tiermod.service import build_store

    item = _run(build_store(_settings(ctx)).resolve_queue_item(item_id, status, reviewer, notes))
    _audit(ctx, reviewer, QUEUE_RESOLVED, "queue_item", item.id, {"status": status, "notes": notes})
    console.print(f"  [green]v[/] {item.id} {item.status} by {item.reviewed_by}")


# ── Stats ────────────────────────────────────────────────────────────


@main.command()
@click.pass_context
def stats(ctx: click.Context):
    """Show queue counts."""
    from tiermod.service import build_store

    counts = _run(build_store(_settings(ctx)).get_stats())
    table = Table(title="Moderation queue")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for key in ("pending", "approved", "rejected", "today_total"):
        table.add_row(key, str(counts.get(key, 0)))
    console.print(table)


# ── Users ────────────────────────────────────────────────────────────


@main.group()
def user():
    """Block and unblock users."""


@user.command(name="block")
@click.argument("user_id")
@click.option("--reason", required=True, help="Why the user is blocked")
@click.option("--by", "actor", default="cli", help="Admin performing the block")
@click.pass_context
def user_block(ctx: click.Context, user_id: str, reason: str, actor: str):
    """Block USER_ID from posting."""
    from tiermod.security.audit_log import USER_BLOCKED
    from tiermod.service import build_store

    _run(build_store(_settings(ctx)).set_user_block_status(user_id, True, reason, actor))
    _audit(ctx, actor, USER_BLOCKED, "user", user_id, {"reason": reason})
    console.print(f"  [red]x[/] {user_id} blocked")


@user.command(name="unblock")
@click.argument("user_id")
@click.option("--by", "actor", default="cli", help="Admin performing the unblock")
@click.pass_context
def user_unblock(ctx: click.Context, user_id: str, actor: str):
    """Allow USER_ID to post again."""
    from tiermod.security.audit_log import USER_UNBLOCKED
    from tiermod.service import build_store

    _run(build_store(_settings(ctx)).set_user_block_status(user_id, False, actor_id=actor))
    _audit(ctx, actor, USER_UNBLOCKED, "user", user_id, {})
    console.print(f"  [green]v[/] {user_id} unblocked")


# ── Audit ────────────────────────────────────────────────────────────


@main.command()
@click.option("--action", "-a", default=None, help="Only show this action (e.g. user.blocked)")
@click.option("--limit", "-n", default=50, type=click.IntRange(1, 1000))
@click.pass_context
def audit(ctx: click.Context, action: str | None, limit: int):
    """Show recent admin actions."""
    from tiermod.service import build_audit_logger

    events = build_audit_logger(_settings(ctx)).get_events(action=action, limit=limit)
    if not events:
        console.print("[yellow]No audit events.[/]")
        return

    table = Table(title=f"Audit log ({len(events)} events)")
    table.add_column("Time", style="dim")
    table.add_column("Actor", style="cyan")
    table.add_column("Action")
    table.add_column("Resource")
    for event in events:
        table.add_row(event.timestamp[:19], event.actor, event.action, f"{event.resource_type}/{event.resource_id}")
    console.print(table)


if __name__ == "__main__":
    main()
