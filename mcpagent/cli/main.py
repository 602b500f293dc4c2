"""
mcpagent CLI - run a prompt against the configured model and MCP tools.

Tools and the model come from ~/.mcpagent/config.yaml and the nearest
.mcpagent/config.yaml.
"""

import logging
import sys
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape
from rich.table import Table

from mcpagent import __version__
from mcpagent.core.loop import LoopStatus, ToolLoop
from mcpagent.mcp.errors import MCPAgentError
from mcpagent.mcp.registry import ToolRegistry
from mcpagent.providers.base import ChatSession, ProviderFactory
from mcpagent.validation.config import Config, ConfigError

console = Console()

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant. Use the available tools when they help."


def _load_config() -> Config:
    try:
        config = Config.load()
        config.merged  # validate early
        return config
    except ConfigError as e:
        console.print(f"[red]Config error: {escape(str(e))}[/red]")
        sys.exit(1)


def _load_registry(config: Config) -> ToolRegistry:
    try:
        return ToolRegistry.from_config(config.merged)
    except ConfigError as e:
        console.print(f"[red]{escape(str(e))}[/red]")
        sys.exit(1)


@click.group(invoke_without_command=True)
@click.option("--version", "-v", is_flag=True, help="Show version")
@click.option("--verbose", is_flag=True, help="Log sessions and rounds")
@click.pass_context
def cli(ctx: click.Context, version: bool, verbose: bool) -> None:
    """
    mcpagent - chat with a model that can call MCP tools.

    \b
    Examples:
        mcpagent ask "Calculate 25 + 17 using the add tool."
        mcpagent tools
        mcpagent probe add
        mcpagent model ollama/llama3 --global
    """
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )

    if version:
        console.print(f"mcpagent v{__version__}")
        return

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument("task", nargs=-1, required=True)
@click.option("--model", "-m", default=None, help="Model, e.g. openai/gpt-4o-mini")
@click.option("--system", "-s", default=None, help="System prompt")
def ask(task: tuple, model: Optional[str], system: Optional[str]) -> None:
    """Run TASK through the tool loop and print the answer."""
    config = _load_config()
    try:
        loop = ToolLoop.from_config(config, model=model)
    except (ConfigError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    session = ChatSession()
    prompt = system or config.merged.agent.system_prompt or DEFAULT_SYSTEM_PROMPT
    fragment = loop.registry.build_prompt_fragment()
    session.add_system(f"{prompt} {fragment}".strip())
    session.add_user(" ".join(task))

    with console.status("[bold blue]Working...[/bold blue]"):
        result = loop.run(session)

    if result.status == LoopStatus.FAILED:
        console.print(f"[red]Error ({result.error_kind}): {escape(str(result.error))}[/red]")
        sys.exit(1)
    if result.status == LoopStatus.ROUND_LIMIT:
        console.print(f"[yellow]Stopped after {result.rounds} rounds without a final answer.[/yellow]")
        sys.exit(1)
    if result.status == LoopStatus.EMPTY_CHOICES:
        console.print("[dim]Model returned no choices.[/dim]")
        return

    console.print(Markdown(result.output))
    console.print(f"[dim]{result.rounds} rounds, {result.tool_calls} tool calls, {result.token_usage:,} tokens[/dim]")


@cli.command()
def tools() -> None:
    """List configured tools."""
    registry = _load_registry(_load_config())
    if not len(registry):
        console.print("[dim]No tools configured. Add them to .mcpagent/config.yaml:[/dim]")
        console.print("[dim]  tools:[/dim]")
        console.print("[dim]    add:[/dim]")
        console.print('[dim]      description: "Add two numbers"[/dim]')
        console.print('[dim]      command: "/path/to/calculator-server"[/dim]')
        console.print("[dim]      parameters:[/dim]")
        console.print("[dim]        - {name: a, type: number}[/dim]")
        console.print("[dim]        - {name: b, type: number}[/dim]")
        return

    table = Table(title=f"Tools ({len(registry)})")
    table.add_column("Name", style="cyan")
    table.add_column("Transport")
    table.add_column("Target", style="dim")
    table.add_column("Description")
    for tool in registry:
        binding = tool.binding
        target = " ".join(binding.argv) if tool.transport_kind == "stdio" else binding.url
        table.add_row(tool.name, tool.transport_kind, target, tool.description)
    console.print(table)


@cli.command()
@click.argument("name")
def probe(name: str) -> None:
    """Connect to NAME's server and show the tools it advertises."""
    config = _load_config()
    registry = _load_registry(config)
    tool = registry.get_tool(name)
    if tool is None:
        console.print(f"[red]Unknown tool: {name}[/red]")
        sys.exit(1)

    try:
        summaries = registry.discover(tool, config.merged.transport)
    except MCPAgentError as e:
        console.print(f"[red]{e.kind}: {escape(str(e))}[/red]")
        sys.exit(1)

    console.print(f"[bold]{name}[/bold] server advertises {len(summaries)} tools:")
    for summary in summaries:
        params = ", ".join(f"{p.name}: {p.type}" for p in summary.parameters)
        console.print(f"  [cyan]{summary.name}[/cyan]({params}) - {summary.description}")


@cli.command()
@click.argument("name", required=False)
@click.option("--global", "global_", is_flag=True, help="Save to ~/.mcpagent/config.yaml")
def model(name: Optional[str], global_: bool) -> None:
    """Show the configured model, or set it to NAME."""
    config = _load_config()
    if name is None:
        console.print(f"Model: [cyan]{escape(config.get_default_model() or '(not set)')}[/cyan]")
        console.print(f"[dim]Providers: {', '.join(ProviderFactory.available_providers())}[/dim]")
        return

    try:
        provider = ProviderFactory.create(name, config)
    except ValueError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        sys.exit(1)

    config.set_model(name, global_=global_)
    try:
        config.save()
    except OSError as e:
        console.print(f"[red]Failed to save config: {escape(str(e))}[/red]")
        sys.exit(1)

    scope = "global" if global_ else "project"
    console.print(f"[green]Model set to {escape(name)} ({scope} config)[/green]")
    if not provider.validate_connection():
        console.print(f"[yellow]Could not validate {provider.provider_name} credentials[/yellow]")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
