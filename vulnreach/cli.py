"""CLI entry point: vulnreach.

Subcommands:
    vulnreach source program.json                   # Source mode analysis
    vulnreach binary ./exe                          # Binary mode via the go command
    vulnreach binary --build-info bi.txt --symbols nm.txt

Exit status is 0 when no vulnerability is found, 3 when some are, and 1 on
errors. The database is read from --db, else the comma-separated
VULNREACH_DB or GOVULNDB environment variable, else https://vuln.go.dev.
HTTP databases are cached under VULNREACH_CACHE (default ~/.cache/vulnreach).
"""

from __future__ import annotations

import asyncio
import io
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click

from vulnreach.api import Analysis, BinaryRequest, SourceRequest, VulnChecker
from vulnreach.config import default_db_urls
from vulnreach.core.logging import setup_logging
from vulnreach.exceptions import VulnReachError
from vulnreach.osv.cache import default_cache
from vulnreach.osv.client import VulnDBClient, new_client, split_urls
from vulnreach.report import exit_code, write_json, write_text


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Verbose logging")
@click.option("--db", default=None, help="Comma-separated vulnerability database URLs")
@click.option("--no-cache", is_flag=True, help="Do not read or write the on-disk database cache")
@click.pass_context
def main(ctx: click.Context, verbose: bool, db: str | None, no_cache: bool) -> None:
    """vulnreach: report known vulnerabilities reachable from a Go program."""
    setup_logging("DEBUG" if verbose else None)
    ctx.ensure_object(dict)
    ctx.obj["db"] = split_urls(db) if db else default_db_urls()
    ctx.obj["cache"] = None if no_cache else default_cache()


def _client(ctx: click.Context) -> VulnDBClient:
    try:
        return new_client(ctx.obj["db"], cache=ctx.obj["cache"])
    except ValueError as e:
        raise click.UsageError(str(e)) from e


def _run(ctx: click.Context, check: Callable[[VulnChecker], Awaitable[Analysis]]) -> Analysis:
    async def go() -> Analysis:
        async with _client(ctx) as client:
            return await check(VulnChecker(client))

    try:
        return asyncio.run(go())
    except VulnReachError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _report(analysis: Analysis, as_json: bool) -> None:
    buf = io.StringIO()
    if as_json:
        write_json(analysis.result, buf)
    elif not analysis.result.vulns:
        buf.write("No vulnerabilities found.\n")
    else:
        write_text(
            analysis.result,
            buf,
            module_versions=analysis.module_versions,
            stacks=analysis.call_stacks,
        )
    click.echo(buf.getvalue(), nl=False)
    sys.exit(exit_code(analysis.result))


@main.command("source")
@click.argument("program", type=click.Path(exists=True, dir_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print findings as JSON")
@click.option("--imports-only", is_flag=True, help="Skip call graph analysis")
@click.pass_context
def source_cmd(ctx: click.Context, program: str, as_json: bool, imports_only: bool) -> None:
    """Analyze a JSON program description."""
    request = SourceRequest(program_path=program, imports_only=imports_only)
    _report(_run(ctx, lambda checker: checker.check_source(request)), as_json)


@main.command("binary")
@click.argument("exe", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--build-info",
    type=click.Path(exists=True, dir_okay=False),
    help="Saved output of 'go version -m EXE'",
)
@click.option(
    "--symbols",
    type=click.Path(exists=True, dir_okay=False),
    help="Saved output of 'go tool nm EXE'",
)
@click.option("--json", "as_json", is_flag=True, help="Print findings as JSON")
@click.option("--imports-only", is_flag=True, help="Report every vulnerable symbol of linked packages")
@click.pass_context
def binary_cmd(
    ctx: click.Context,
    exe: str | None,
    build_info: str | None,
    symbols: str | None,
    as_json: bool,
    imports_only: bool,
) -> None:
    """Analyze a compiled Go executable."""
    if exe is not None:
        request = BinaryRequest(exe=exe, imports_only=imports_only)
    elif build_info and symbols:
        request = BinaryRequest(
            build_info=Path(build_info).read_text(),
            symbols=Path(symbols).read_text(),
            imports_only=imports_only,
        )
    else:
        raise click.UsageError("pass EXE, or both --build-info and --symbols")
    _report(_run(ctx, lambda checker: checker.check_binary(request)), as_json)


if __name__ == "__main__":
    main()
