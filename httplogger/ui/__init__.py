"""
HTTP Logger Terminal UI
=======================
Rich terminal output: banner, status panels, and the live request feed.
"""

from __future__ import annotations

from typing import Any, Dict

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from httplogger import __version__
from httplogger.core.models import ProxyRequest

# ── Theme ────────────────────────────────────────────────────────────────────

HTTPLOGGER_THEME = Theme({
    "info": "cyan",
    "warning": "yellow",
    "error": "bold red",
    "success": "bold green",
    "title": "bold bright_green",
    "subtitle": "dim",
    "https": "bold magenta",
    "http": "bold cyan",
    "status.ok": "green",
    "status.redirect": "yellow",
    "status.error": "red",
    "dim": "dim white",
})

console = Console(theme=HTTPLOGGER_THEME)

# ── Banner ───────────────────────────────────────────────────────────────────

BANNER = (
    f"[title]HTTP Logger[/] [dim]v{__version__}[/]\n"
    "[subtitle]Intercepting HTTP/HTTPS proxy[/]"
)


def show_banner() -> None:
    """Display the HTTP Logger banner."""
    console.print(Panel(BANNER, border_style="green", expand=False))


# ── Status & Info ────────────────────────────────────────────────────────────

def show_certificate_instructions(cert_path: str, fingerprint: str) -> None:
    """Tell the user how to trust the root certificate."""
    console.print(
        "\n[info]Issuing a self-signed root certificate to decrypt HTTPS traffic.[/]\n"
        "  To monitor HTTPS traffic, import it into your trusted root store:\n"
        f"  [bold]{cert_path}[/]\n"
        f"  [dim]SHA-256 {fingerprint}[/]\n"
    )


def show_stats(stats: Dict[str, Any]) -> None:
    """Display server statistics."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Accepted", str(stats.get("accepted", 0)))
    table.add_row("Completed", str(stats.get("completed", 0)))
    table.add_row("Untraced", str(stats.get("untraced", 0)))
    table.add_row("Forced closed", str(stats.get("forced_closed", 0)))
    traffic = stats.get("traffic") or {}
    if traffic:
        table.add_row("Traced requests", str(traffic.get("total_requests", 0)))
        table.add_row("Bytes relayed", f"{traffic.get('total_bytes', 0):,}")
        table.add_row("Errors", str(traffic.get("errors", 0)))

    console.print(Panel(table, title="[title]Proxy Statistics[/]", border_style="green"))


def show_config(config: Dict[str, Any]) -> None:
    """Display effective configuration, one panel per section."""
    for section, values in config.items():
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="dim")
        table.add_column("Value")
        for key, value in values.items():
            table.add_row(key, str(value))
        console.print(Panel(table, title=f"[title]{section}[/]", border_style="green", expand=False))


# ── Messages ─────────────────────────────────────────────────────────────────

def print_info(text: str) -> None:
    console.print(f"[info]ℹ {text}[/]")


def print_success(text: str) -> None:
    console.print(f"[success]✅ {text}[/]")


def print_warning(text: str) -> None:
    console.print(f"[warning]⚠️  {text}[/]")


def print_error(text: str) -> None:
    console.print(f"[error]❌ {text}[/]")


def _status_style(code: int) -> str:
    if code >= 400:
        return "status.error"
    if code >= 300:
        return "status.redirect"
    return "status.ok"


def print_trace(request: ProxyRequest) -> None:
    """One line per relayed request."""
    scheme = "[https]HTTPS[/]" if request.is_https else "[http]HTTP [/]"
    if request.status_code is not None:
        status = f"[{_status_style(request.status_code)}]{request.status_code}[/]"
    else:
        status = "[status.error]---[/]"
    line = (
        f"[dim]{request.timestamp:%H:%M:%S}[/] {scheme} {status} "
        f"[bold]{escape(request.method)}[/] {escape(request.remote_uri)} "
        f"[dim]({request.duration_ms:.0f}ms, {request.response_bytes}B)[/]"
    )
    if request.error:
        line += f" [error]{escape(request.error)}[/]"
    console.print(line, highlight=False)
