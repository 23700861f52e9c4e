"""CLI entry point for aisessions."""

import json
import logging
from datetime import datetime, timezone

import click
import uvicorn

from .core import Source
from .export import session_to_json, session_to_markdown
from .search import DEFAULT_SEARCH_LIMIT, search_result_to_dict, search_sessions
from .service import SessionService

SOURCE_CHOICE = click.Choice([s.value for s in Source])


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool):
    """Browse and search AI coding sessions from Claude Code, OpenCode,
    Codex, Amp, Junie, Gemini, Droid and Kilo Code."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)


def _get_service(ctx: click.Context) -> SessionService:
    service = ctx.obj.get("service")
    if service is None:
        service = ctx.obj["service"] = SessionService()
    return service


def _load_detail(ctx: click.Context, session_id: str, source: str | None):
    detail = _get_service(ctx).get_session_detail(session_id, source)
    if detail is None:
        raise click.ClickException(f"Session not found: {session_id}")
    return detail


@main.command()
@click.option("--port", default=8080, help="Port to serve on.")
@click.option("--host", default="127.0.0.1", help="Host to bind to.")
def serve(port: int, host: str):
    """Start the JSON API server."""
    click.echo(f"Starting aisessions on http://{host}:{port}")
    uvicorn.run("aisessions.server:app", host=host, port=port, reload=False)


@main.command("list")
@click.option("--source", type=SOURCE_CHOICE, help="Only list one source.")
@click.option("--project", help="Only list sessions of this project path.")
@click.option("--limit", default=50, show_default=True, help="Maximum sessions to show.")
@click.pass_context
def list_sessions(ctx: click.Context, source: str | None, project: str | None, limit: int):
    """List sessions, most recent first."""
    sessions = _get_service(ctx).get_all_sessions(project_path=project)
    if source:
        sessions = [s for s in sessions if s.source == Source(source)]

    for s in sessions[:limit]:
        updated = _format_millis(s.sort_timestamp)
        count = "" if s.message_count is None else f" [{s.message_count}]"
        click.echo(f"{updated}  {s.source.value:<12} {s.session_id}  {s.title}{count}")


@main.command()
@click.argument("session_id")
@click.option("--source", type=SOURCE_CHOICE, help="Source owning the session.")
@click.pass_context
def show(ctx: click.Context, session_id: str, source: str | None):
    """Print a session as Markdown."""
    click.echo(session_to_markdown(_load_detail(ctx, session_id, source)))


@main.command()
@click.argument("query")
@click.option("--limit", default=DEFAULT_SEARCH_LIMIT, show_default=True, help="Maximum hits (1-50).")
@click.option("--json", "as_json", is_flag=True, help="Print the structured JSON result.")
@click.pass_context
def search(ctx: click.Context, query: str, limit: int, as_json: bool):
    """Search the content of every session."""
    try:
        result = search_sessions(_get_service(ctx), query, limit)
    except ValueError as e:
        raise click.UsageError(str(e))

    if as_json:
        click.echo(json.dumps(search_result_to_dict(result), indent=2, ensure_ascii=False))
        return

    if not result.results:
        click.echo("No matches.")
        return
    for hit in result.results:
        click.echo(f"{hit.provider} {hit.session_id}  {hit.title}  (score {hit.score})")
        for snippet in hit.snippets:
            click.echo("    " + " ".join(snippet.split()))


@main.command()
@click.argument("session_id")
@click.option("--source", type=SOURCE_CHOICE, help="Source owning the session.")
@click.option("--format", "fmt", type=click.Choice(["md", "json"]), default="md", show_default=True)
@click.option("-o", "--output", type=click.Path(dir_okay=False, writable=True), help="Write to a file.")
@click.pass_context
def export(ctx: click.Context, session_id: str, source: str | None, fmt: str, output: str | None):
    """Export a session as Markdown or JSON."""
    detail = _load_detail(ctx, session_id, source)
    content = session_to_json(detail) if fmt == "json" else session_to_markdown(detail)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(content)
        click.echo(f"Wrote {output}")
    else:
        click.echo(content)


def _format_millis(ms: int) -> str:
    if ms <= 0:
        return "----------------"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
