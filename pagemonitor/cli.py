#!/usr/bin/env python3

import sys
import typer
import uvloop
import logging
from pathlib import Path
from typing import Annotated
from contextlib import suppress
from rich.console import Console

from pagemonitor import defaults
from pagemonitor.browser import Browser
from pagemonitor.devices import devices
from pagemonitor.events import lifecycle_events
from pagemonitor.errors import PageMonitorError
from pagemonitor.helpers import validate_url, is_cancellation
from pagemonitor import __version__, __build_date__


stdout = Console(file=sys.stdout)
stderr = Console(file=sys.stderr)
log = logging.getLogger(__name__)


app = typer.Typer(add_completion=False)


@app.command(help="Capture a full-page JPEG screenshot of a URL")
def monitor(
    url: Annotated[
        str, typer.Option("-url", "--url", "-u", help="URL you want to get a screenshot of", metavar="URL")
    ] = defaults.url,
    filename: Annotated[
        Path, typer.Option("-filename", "--filename", "-f", help="Filename to save the screenshot", metavar="FILENAME")
    ] = Path(defaults.filename),
    # screenshot options
    quality: Annotated[
        int,
        typer.Option("-q", "--quality", help="JPEG quality (0-100)", rich_help_panel="Screenshots"),
    ] = defaults.quality,
    device: Annotated[
        str,
        typer.Option(
            "-d",
            "--device",
            help=f"Device to emulate ({', '.join(devices)})",
            metavar="DEVICE",
            rich_help_panel="Screenshots",
        ),
    ] = defaults.device,
    # page load options
    event: Annotated[
        str,
        typer.Option(
            "-e",
            "--event",
            help=f"Lifecycle event to wait for ({', '.join(lifecycle_events)})",
            metavar="EVENT",
            rich_help_panel="Page load",
        ),
    ] = defaults.wait_event,
    timeout: Annotated[
        float,
        typer.Option(
            "-t",
            "--timeout",
            help=f"Seconds to wait for the lifecycle event (default: {defaults.wait_timeout:.0f})",
            metavar="SECONDS",
            rich_help_panel="Page load",
        ),
    ] = defaults.wait_timeout,
    # browser options
    chrome_path: Annotated[
        str, typer.Option("-c", "--chrome", help="Path to Chrome executable", rich_help_panel="Browser")
    ] = None,
    proxy: Annotated[str, typer.Option("-p", "--proxy", help="HTTP proxy to use", rich_help_panel="Browser")] = None,
    # output options
    silent: Annotated[bool, typer.Option("--silent", help="Don't print the banner")] = False,
    debug: Annotated[bool, typer.Option("--debug", help="Enable debug logging")] = False,
):
    # enable debugging if requested
    if debug:
        root_logger = logging.getLogger("pagemonitor")
        root_logger.setLevel(logging.DEBUG)

    log.info(f"## STARTING PAGEMONITOR VERSION {__version__}, BUILD AT {__build_date__}")
    if not silent:
        stderr.print(f"[bold]pagemonitor[/bold] v{__version__} ({__build_date__})", highlight=False)

    try:
        url = validate_url(url)
        if device.lower() not in devices:
            raise PageMonitorError(f"Unknown device {device!r} (available devices: {', '.join(devices)})")
    except PageMonitorError as e:
        _fatal(e)

    log.info(f"## will try url: {url}, and save screenshot here: {filename}")

    async def _monitor():
        browser = Browser(
            chrome_path=chrome_path,
            device=device,
            quality=quality,
            wait_event=event,
            wait_timeout=timeout,
            proxy=proxy,
        )
        try:
            # start the browser
            await browser.start()
            return await browser.screenshot(url)
        finally:
            # stop the browser
            with suppress(Exception):
                await browser.stop()

    try:
        screenshot = uvloop.run(_monitor())
        size = screenshot.save(filename)
    except (PageMonitorError, OSError) as e:
        _fatal(e)

    width, height = screenshot.geometry.size
    stdout.print(f"[bold green]{url}[/bold green]\t{width}x{height}\t{size:,} bytes\t{filename}", soft_wrap=True)


def _fatal(e):
    log.error(f"{e}")
    stderr.print(f"[bold red]ERROR:[/bold red] {e}", highlight=False)
    raise typer.Exit(code=1)


def main():
    try:
        app()
    except BaseException as e:
        if is_cancellation(e):
            sys.exit(1)
        elif not isinstance(e, SystemExit):
            stderr.print_exception(show_locals=True)
            sys.exit(1)
        raise


if __name__ == "__main__":
    main()
