"""
Statusline rendering.

Turns an accounting snapshot into a single styled line.
"""

from typing import List, Optional

from rich.text import Text

from openrouter_statusline.config.loader import ModelDisplayConfig, ThresholdConfig
from openrouter_statusline.core.accounting import Snapshot
from openrouter_statusline.core.model_names import prettify_model_name

# NerdFont glyphs
GLYPH_MODEL = "\U000f16a5"
GLYPH_COST = "\U000f01c1"
GLYPH_CACHE = "\U000f00e8"
GLYPH_BALANCE = "\U000f0584"
GLYPH_ACCOUNT = "\U000f1097"
GLYPH_OK = "\uf058"
GLYPH_WARN = "\uf06a"
SEPARATOR = "│"


def format_amount(amount: float) -> str:
    """Format a dollar figure with two decimals."""
    return f"{amount:.2f}"


def _tiered_style(value: float, critical: float, warning: float) -> str:
    if value < critical:
        return "red"
    if value < warning:
        return "yellow"
    return "green"


def _model_segment(snapshot: Snapshot, display: ModelDisplayConfig) -> Text:
    segment = Text()
    segment.append(GLYPH_MODEL, style="cyan")
    segment.append(" ")
    if snapshot.last_provider:
        segment.append(snapshot.last_provider, style="dim")
        segment.append("/")
    if snapshot.last_model:
        label = prettify_model_name(
            snapshot.last_model, rules=display.rules, enabled=display.prettify
        )
    else:
        label = "?"
    segment.append(label, style="cyan")
    return segment


def _balance_segment(snapshot: Snapshot, thresholds: ThresholdConfig) -> Optional[Text]:
    if snapshot.key_usage is None:
        return None
    remaining = snapshot.key_remaining
    if remaining is None:
        # unlimited key
        return Text(f"{GLYPH_BALANCE} used ${format_amount(snapshot.key_usage)}", style="dim")
    style = _tiered_style(
        remaining, thresholds.key_balance_critical, thresholds.key_balance_warning
    )
    return Text(f"{GLYPH_BALANCE} ${format_amount(remaining)}", style=style)


def render_statusline(
    snapshot: Snapshot,
    thresholds: Optional[ThresholdConfig] = None,
    display: Optional[ModelDisplayConfig] = None
) -> Text:
    """Build the statusline for a snapshot.

    Segments: model, session cost, cache discount (when non-zero), key
    balance, account credits and a fetch-health glyph when this run looked
    up new generations.
    """
    thresholds = thresholds or ThresholdConfig()
    display = display or ModelDisplayConfig()
    parts: List[Text] = [_model_segment(snapshot, display)]

    cost_style = "yellow" if snapshot.total_cost > thresholds.session_cost_warning else "green"
    parts.append(Text(f"{GLYPH_COST} {format_amount(snapshot.total_cost)}", style=cost_style))

    if snapshot.total_cache_discount != 0:
        parts.append(Text(
            f"{GLYPH_CACHE} ${format_amount(abs(snapshot.total_cache_discount))}", style="dim"
        ))

    balance = _balance_segment(snapshot, thresholds)
    if balance is not None:
        parts.append(balance)

    if snapshot.account_credits is not None:
        style = _tiered_style(
            snapshot.account_credits,
            thresholds.account_credits_critical,
            thresholds.account_credits_warning
        )
        parts.append(Text(
            f"{GLYPH_ACCOUNT} ${format_amount(snapshot.account_credits)}", style=style
        ))

    if snapshot.new_event_count > 0:
        if snapshot.failed == 0:
            parts.append(Text(GLYPH_OK, style="green"))
        else:
            parts.append(Text(GLYPH_WARN, style="red"))

    separator = Text(f" {SEPARATOR} ", style="dim")
    return separator.join(parts)
