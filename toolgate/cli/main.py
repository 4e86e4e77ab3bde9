"""
Toolgate CLI - Inspect and invoke tools from the terminal.

Run `toolgate tools` to list the registered tools and
`toolgate invoke NAME --args '{...}'` to run one through the gate.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import click
import httpx
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from toolgate import __version__
from toolgate.codebase.manager import CodebaseManager
from toolgate.core.toolbox import Toolbox
from toolgate.db.store import EnvSettingsResolver, MemoryRowStore
from toolgate.providers.stream import RelayError
from toolgate.rag.retrieval import NoSourceConfiguredError
from toolgate.tools.executor import invoke_with_retries
from toolgate.tools.schema import Failure, NeedsConfirmation
from toolgate.validation.config import Config, ConfigError

console = Console()

CLI_DOC_ID = "cli"
CLI_CONNECTION = "memory://cli"

EXIT_FAILURE = 1
EXIT_NEEDS_CONFIRMATION = 2


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )


def _load_json_file(path: str) -> Any:
    try:
        with open(path) as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Failed to read {path}: {e}")


def _run_with_toolbox(
    ctx: click.Context,
    work: Callable[[Toolbox], Any],
    **build_kwargs: Any,
) -> Any:
    """Build a Toolbox around a fresh HTTP client and run ``work`` on it."""
    config: Config = ctx.obj["config"]
    client_factory: Callable[[], httpx.AsyncClient] = ctx.obj.get("client_factory", httpx.AsyncClient)

    async def runner() -> Any:
        async with client_factory() as client:
            toolbox = Toolbox.build(config, client, **build_kwargs)
            return await work(toolbox)

    return asyncio.run(runner())


@click.group()
@click.version_option(__version__, prog_name="toolgate")
@click.option("--log-level", default=None, help="Override the configured log level")
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]) -> None:
    """
    Toolgate - Gated tool invocation for LLM agents.

    \b
    Examples:
        toolgate tools --category db
        toolgate schema db_select
        toolgate invoke db_select --db data.json --args '{"table": "users"}'
        toolgate kb-search "refund policy"
        toolgate config set relay.model gpt-4o --global
    """
    ctx.ensure_object(dict)
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = Config.load()
        except ConfigError as e:
            raise click.ClickException(str(e))

    try:
        level = log_level or ctx.obj["config"].merged.logging.level
    except ConfigError as e:
        raise click.ClickException(str(e))
    setup_logging(level)


@cli.command()
@click.option("--category", type=click.Choice(["db", "web", "code", "knowledge", "system"]))
@click.pass_context
def tools(ctx: click.Context, category: Optional[str]) -> None:
    """List registered tools."""

    async def work(toolbox: Toolbox):
        return toolbox.registry.list(category=category)

    descriptors = _run_with_toolbox(ctx, work)
    if not descriptors:
        console.print("[dim]No tools registered.[/dim]")
        return

    table = Table(title="Registered Tools", show_lines=True, border_style="blue")
    table.add_column("Name", style="bold cyan")
    table.add_column("Category")
    table.add_column("Permissions")
    table.add_column("Confirm")
    table.add_column("Timeout")

    for d in descriptors:
        table.add_row(
            d.name,
            d.metadata.category,
            ", ".join(sorted(d.permissions)) or "-",
            "yes" if d.metadata.requires_confirm else "",
            f"{d.metadata.timeout_ms}ms",
        )
    console.print(table)


@cli.command()
@click.argument("name")
@click.pass_context
def schema(ctx: click.Context, name: str) -> None:
    """Print a tool's external schema as JSON."""

    async def work(toolbox: Toolbox):
        return toolbox.registry.lookup(name)

    descriptor = _run_with_toolbox(ctx, work)
    if descriptor is None:
        raise click.ClickException(f"Tool not found: {name}")
    click.echo(json.dumps(descriptor.external_format(), indent=2))


@cli.command()
@click.argument("name")
@click.option("--args", "args_json", default="{}", help="Tool arguments as a JSON object")
@click.option("--confirm", is_flag=True, help="Confirm a side-effecting call")
@click.option("--grant", "grants", multiple=True, help="Permission tag to grant (repeatable)")
@click.option("--doc-id", default=None, help="Document whose data store the db tools use")
@click.option(
    "--db",
    "db_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON row store; writes are saved back",
)
@click.option(
    "--codebase",
    "codebase_file",
    type=click.Path(exists=True, dir_okay=False),
    help="JSON codebase; edits are written back",
)
@click.pass_context
def invoke(
    ctx: click.Context,
    name: str,
    args_json: str,
    confirm: bool,
    grants: Tuple[str, ...],
    doc_id: Optional[str],
    db_file: Optional[str],
    codebase_file: Optional[str],
) -> None:
    """Invoke a tool through the execution gate."""
    try:
        arguments: Dict[str, Any] = json.loads(args_json)
    except ValueError as e:
        raise click.ClickException(f"--args is not valid JSON: {e}")
    if not isinstance(arguments, dict):
        raise click.ClickException("--args must be a JSON object")
    if confirm:
        arguments["confirm"] = True

    build_kwargs: Dict[str, Any] = {}
    store: Optional[MemoryRowStore] = None
    if db_file:
        store = MemoryRowStore.from_dict(CLI_CONNECTION, _load_json_file(db_file))
        build_kwargs["store"] = store
        doc_id = doc_id or CLI_DOC_ID
        build_kwargs["resolver"] = EnvSettingsResolver({doc_id: {"DATABASE_URL": CLI_CONNECTION}})

    codebase: Optional[CodebaseManager] = None
    if codebase_file:
        codebase = CodebaseManager()
        if not codebase.load_json(Path(codebase_file).read_text()):
            raise click.ClickException(f"Failed to load codebase from {codebase_file}")
        build_kwargs["codebase"] = codebase

    async def work(toolbox: Toolbox):
        context = toolbox.context(grants=grants or None, doc_id=doc_id)
        delay = toolbox.config.merged.gate.retry_delay_s
        return await invoke_with_retries(toolbox.executor, name, arguments, context, delay=delay)

    outcome = _run_with_toolbox(ctx, work, **build_kwargs)

    if isinstance(outcome, NeedsConfirmation):
        payload = outcome.confirm_payload
        console.print(Panel(
            Text(json.dumps(payload.details, indent=2, default=str)),
            title=escape(payload.title),
            border_style="yellow",
        ))
        console.print("[dim]Re-run with --confirm to proceed.[/dim]")
        sys.exit(EXIT_NEEDS_CONFIRMATION)

    if isinstance(outcome, Failure):
        console.print(f"[red]{outcome.error_kind.value}: {escape(outcome.message)}[/red]")
        if outcome.retryable:
            console.print("[dim]This failure is retryable.[/dim]")
        sys.exit(EXIT_FAILURE)

    click.echo(outcome.to_tool_message())
    if store is not None:
        Path(db_file).write_text(json.dumps(store.to_dict(CLI_CONNECTION), indent=2, default=str))
    if codebase is not None:
        Path(codebase_file).write_text(codebase.to_json())


@cli.command("kb-search")
@click.argument("query")
@click.option("--top-k", default=None, type=click.IntRange(1, 20), help="Maximum passages")
@click.pass_context
def kb_search(ctx: click.Context, query: str, top_k: Optional[int]) -> None:
    """Search the configured knowledge bases."""
    config: Config = ctx.obj["config"]
    limit = top_k or config.merged.knowledge.top_k

    async def work(toolbox: Toolbox):
        return await toolbox.retriever.search(query, config.get_knowledge_sources(), limit)

    try:
        results = _run_with_toolbox(ctx, work)
    except (NoSourceConfiguredError, ConfigError) as e:
        raise click.ClickException(str(e))

    if not results:
        console.print("[dim]No results.[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("#", width=3)
    table.add_column("Source", style="cyan")
    table.add_column("Score", justify="right")
    table.add_column("Passage")
    for i, r in enumerate(results, 1):
        table.add_row(str(i), escape(r.source_id), f"{r.score:.3f}", escape(r.text[:200]))
    console.print(table)


@cli.command()
@click.argument("message")
@click.option("--system", "system_prompt", default=None, help="System prompt")
@click.option("--no-knowledge", is_flag=True, help="Do not ground the answer in knowledge bases")
@click.pass_context
def chat(ctx: click.Context, message: str, system_prompt: Optional[str], no_knowledge: bool) -> None:
    """Stream a chat completion to the terminal."""
    config: Config = ctx.obj["config"]

    async def work(toolbox: Toolbox):
        sources = [] if no_knowledge else config.get_knowledge_sources()
        tokens = toolbox.relay.stream_chat_with_knowledge(
            message,
            system_prompt=system_prompt,
            retriever=toolbox.retriever,
            sources=sources,
            top_k=config.merged.knowledge.top_k,
        )
        async for token in tokens:
            console.print(token, end="", markup=False, highlight=False, soft_wrap=True)
        console.print()

    try:
        _run_with_toolbox(ctx, work)
    except RelayError as e:
        raise click.ClickException(str(e))


@cli.group("config")
def config_group() -> None:
    """Create and edit configuration files."""


@config_group.command("init")
def config_init() -> None:
    """Write a default ~/.toolgate/config.yaml if none exists."""
    existed = (Config.GLOBAL_CONFIG_DIR / "config.yaml").exists()
    try:
        path = Config.create_default_global()
    except ConfigError as e:
        raise click.ClickException(str(e))

    if existed:
        console.print(f"[dim]Config already exists:[/dim] {escape(str(path))}")
    else:
        console.print(f"[green]Created[/green] {escape(str(path))}")


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.option("--global", "global_", is_flag=True, help="Write to ~/.toolgate instead of the project")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str, global_: bool) -> None:
    """
    Set SECTION.KEY to VALUE and save it.

    VALUE is read as YAML, so numbers, booleans and lists keep their type.
    """
    section, _, name = key.partition(".")
    if not section or not name:
        raise click.ClickException("KEY must look like section.key, e.g. relay.model")

    try:
        parsed = yaml.safe_load(value)
    except yaml.YAMLError as e:
        raise click.ClickException(f"VALUE is not valid YAML: {e}")

    config: Config = ctx.obj["config"]
    config.set_value(section, name, parsed, global_=global_)
    try:
        _ = config.merged
        path = config.save(global_=global_)
    except ConfigError as e:
        raise click.ClickException(str(e))
    console.print(f"[green]Set[/green] {escape(key)} in {escape(str(path))}")


def main() -> None:
    """Entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
