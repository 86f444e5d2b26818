"""
CLI interface for the OpenRouter statusline.

Reads the Claude Code statusline payload from stdin, updates the session's
usage totals and prints one status line.
"""

import json
import logging
import os
import sys
import time
from dataclasses import replace
from typing import Mapping, Optional, Tuple

import httpx
import typer
from rich.console import Console
from rich.table import Table
from rich.text import Text

from openrouter_statusline.config.loader import StatuslineConfig, resolve_config
from openrouter_statusline.core.accounting import AccountingEngine
from openrouter_statusline.core.fetcher import OpenRouterClient
from openrouter_statusline.core.transcript import extract_generation_ids
from openrouter_statusline.storage.repository import StateRepository
from .render import GLYPH_WARN, format_amount, render_statusline

app = typer.Typer()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

API_KEY_VARS = ("ANTHROPIC_AUTH_TOKEN", "ANTHROPIC_API_KEY")
# Misspelled variant first: it is the name existing setups export.
MANAGEMENT_KEY_VARS = ("OPENROUTER_MANAGMENT_KEY", "OPENROUTER_MANAGEMENT_KEY")

MISSING_KEY_MESSAGE = f"{GLYPH_WARN} Set ANTHROPIC_AUTH_TOKEN to use OpenRouter statusline"
INVALID_INPUT_MESSAGE = "Invalid statusline input"


def _first_env(env: Mapping[str, str], names: Tuple[str, ...]) -> str:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return ""


def _parse_input(raw_input: str) -> Optional[Tuple[str, str]]:
    """Extract ``(session_id, transcript_path)`` from the stdin payload."""
    try:
        payload = json.loads(raw_input)
    except (ValueError, RecursionError):
        return None
    if not isinstance(payload, dict):
        return None
    session_id = payload.get("session_id")
    transcript_path = payload.get("transcript_path")
    if not isinstance(session_id, str) or not isinstance(transcript_path, str):
        return None
    return session_id, transcript_path


def run_statusline(
    raw_input: str,
    env: Mapping[str, str],
    config: StatuslineConfig,
    now_ms: Optional[int] = None,
    http_client: Optional[httpx.Client] = None,
    sleep=time.sleep
) -> Text:
    """Run one accounting pass and return the rendered statusline.

    Args:
        raw_input: JSON payload Claude Code writes to stdin
        env: Environment holding the credentials
        config: Statusline configuration
        now_ms: Wall-clock override in epoch milliseconds
        http_client: Optional httpx client for the OpenRouter client
        sleep: Sleep function used for retry and throttle delays

    Returns:
        The styled statusline, or a short message when the API key or
        the input payload is missing
    """
    api_key = _first_env(env, API_KEY_VARS)
    if not api_key:
        return Text(MISSING_KEY_MESSAGE)

    parsed = _parse_input(raw_input)
    if parsed is None:
        return Text(INVALID_INPUT_MESSAGE)
    session_id, transcript_path = parsed

    management_key = _first_env(env, MANAGEMENT_KEY_VARS) or None
    if now_ms is None:
        now_ms = int(time.time() * 1000)

    with OpenRouterClient(api_key, config.fetch, http_client=http_client, sleep=sleep) as client:
        engine = AccountingEngine(
            client, StateRepository(config.state_dir), balance_ttl_ms=config.balance_ttl_ms
        )
        report = engine.run(
            session_id,
            extract_generation_ids(transcript_path),
            now_ms,
            management_key=management_key
        )

    return render_statusline(report.snapshot, config.thresholds, config.display)


def _make_console(no_color: bool) -> Console:
    if no_color:
        return Console(no_color=True, highlight=False, soft_wrap=True)
    # Claude Code reads stdout through a pipe, so colours must be forced.
    return Console(force_terminal=True, color_system="standard", highlight=False, soft_wrap=True)


def _setup_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            stream=sys.stderr,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config_path: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to a YAML configuration file"
    ),
    state_dir: Optional[str] = typer.Option(
        None,
        "--state-dir",
        help="Directory for per-session state files"
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log diagnostics to stderr"
    ),
    no_color: bool = typer.Option(
        False,
        "--no-color",
        help="Print the statusline without ANSI styling"
    )
):
    """OpenRouter cost statusline for Claude Code.

    Without a sub-command, reads the statusline JSON from stdin and prints
    the session's cost summary.
    """
    _setup_logging(verbose)
    ctx.obj = {"config_path": config_path, "state_dir": state_dir, "no_color": no_color}
    if ctx.invoked_subcommand is not None:
        return

    console = _make_console(no_color)
    try:
        config = resolve_config(config_path)
        if state_dir:
            config = replace(config, state_dir=state_dir)
        line = run_statusline(sys.stdin.read(), os.environ, config)
    except Exception as e:
        logging.getLogger(__name__).debug("Statusline run failed", exc_info=True)
        line = Text(f"{GLYPH_WARN} {e}")

    console.print(line, end="")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def show(
    ctx: typer.Context,
    session_id: str = typer.Argument(..., help="Session id to inspect")
):
    """Print the persisted totals for a session without calling the API."""
    options = ctx.obj or {}
    console = _make_console(options.get("no_color", False))
    try:
        state_dir = options.get("state_dir") or resolve_config(options.get("config_path")).state_dir
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    repository = StateRepository(state_dir)
    if not repository.exists(session_id):
        console.print(f"[yellow]No state recorded for session {session_id}[/]")
        sys.exit(EXIT_CODE_FAIL)

    state = repository.load(session_id)

    table = Table(title=f"Session {session_id}")
    table.add_column("Field")
    table.add_column("Value", justify="right")
    table.add_row("Generations", str(len(state.seen_ids)))
    table.add_row("Total cost", f"${format_amount(state.total_cost)}")
    table.add_row("Cache discount", f"${format_amount(state.total_cache_discount)}")
    table.add_row("Provider", state.last_provider or "-")
    table.add_row("Model", state.last_model or "-")
    if state.key_usage is not None:
        table.add_row("Key usage", f"${format_amount(state.key_usage)}")
        limit = "unlimited" if state.key_limit is None else f"${format_amount(state.key_limit)}"
        table.add_row("Key limit", limit)
    if state.account_credits is not None:
        table.add_row("Account credits", f"${format_amount(state.account_credits)}")
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
