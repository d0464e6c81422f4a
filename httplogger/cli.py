"""
HTTP Logger CLI
===============
Command-line entry point: start the proxy, inspect the root certificate,
and show the effective configuration.
"""

from __future__ import annotations

import logging
import shutil
import sys
import time
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.logging import RichHandler

from httplogger import __version__
from httplogger.config import CA_DIR, LOG_FILE, HttpLoggerConfig, load_config, save_config
from httplogger.core.certs import load_or_create_authority
from httplogger.core.server import create_proxy_server
from httplogger.ui import (
    console,
    print_error,
    print_info,
    print_success,
    print_trace,
    print_warning,
    show_banner,
    show_certificate_instructions,
    show_config,
    show_stats,
)

load_dotenv()


def setup_logging(verbose: bool = False, log_file: Optional[Path] = LOG_FILE) -> logging.Logger:
    """Route ``httplogger.*`` logs to the rich console and a log file."""
    logger = logging.getLogger("httplogger")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s"))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


# ── Main CLI ─────────────────────────────────────────────────────────────────

@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.option("--no-banner", is_flag=True, help="Skip banner display")
@click.version_option(__version__, prog_name="httplogger")
@click.pass_context
def main(ctx, verbose, no_banner):
    """HTTP Logger: intercepting HTTP/HTTPS proxy"""
    ctx.ensure_object(dict)

    config = load_config()
    if verbose:
        config.ui.verbose = True
    if no_banner:
        config.ui.show_banner = False

    ctx.obj["config"] = config
    setup_logging(config.ui.verbose)


@main.command()
@click.option("--address", "-a", default=None, help="Address to listen on (default 127.0.0.1)")
@click.option("--port", "-p", default=None, type=int, help="Port to listen on (default 8642)")
@click.option("--workers", "-w", default=None, type=int, help="Worker threads")
@click.option("--system-proxy/--no-system-proxy", default=None, help="Register as the OS proxy while running")
@click.option("--trace-file/--no-trace-file", default=None, help="Append traced requests to a JSON lines file")
@click.pass_context
def run(ctx, address, port, workers, system_proxy, trace_file):
    """Start the proxy and print every relayed request."""
    config: HttpLoggerConfig = ctx.obj["config"]

    # Apply CLI overrides
    if address:
        config.proxy.address = address
    if port is not None:
        config.proxy.port = port
    if workers:
        config.proxy.max_workers = workers
    if system_proxy is not None:
        config.proxy.system_proxy = system_proxy
    if trace_file is not None:
        config.trace.file = trace_file

    if config.ui.show_banner:
        show_banner()

    server = create_proxy_server(config)
    authority = server.certificates.authority
    show_certificate_instructions(str(authority.certificate_path or "(not saved)"), authority.fingerprint)

    if config.trace.console and server.traffic_log is not None:
        server.traffic_log.on_request(print_trace)

    result = server.start()
    if not result["ok"]:
        print_error(result["error"])
        sys.exit(1)

    print_success(result["message"])
    if not result["system_proxy"] and config.proxy.system_proxy:
        print_warning(
            "Unable to set your proxy options. Please configure this server "
            "as your proxy manually."
        )
    print_info(f"Try: {result['curl_example']}")
    print_info("Press Ctrl+C to stop the proxy")

    listener_failed = False
    try:
        while server.is_serving:
            time.sleep(0.5)
        # Still running means the accept thread died underneath us
        listener_failed = server.is_running
    except KeyboardInterrupt:
        console.print()
        print_info("Shutting down proxy server...")
    finally:
        stats = server.stop()
        if stats.get("ok"):
            show_stats(stats)

    if listener_failed:
        print_error("Proxy listener stopped unexpectedly")
        sys.exit(1)


@main.command()
@click.option("--export", "export_path", default=None, type=click.Path(dir_okay=False), help="Copy the root certificate here")
@click.pass_context
def ca(ctx, export_path):
    """Show (creating if needed) the root certificate to trust."""
    config: HttpLoggerConfig = ctx.obj["config"]
    authority = load_or_create_authority(CA_DIR, key_size=config.certs.key_size)
    show_certificate_instructions(str(authority.certificate_path), authority.fingerprint)
    if export_path:
        shutil.copyfile(authority.certificate_path, export_path)
        print_success(f"Root certificate exported to {export_path}")


@main.command(name="config")
@click.option("--save", is_flag=True, help="Write the effective configuration to the config file")
@click.pass_context
def config_cmd(ctx, save):
    """Show the effective configuration."""
    config: HttpLoggerConfig = ctx.obj["config"]
    show_config(config.to_dict())
    if save:
        save_config(config)
        print_success("Configuration saved")


if __name__ == "__main__":
    main()
