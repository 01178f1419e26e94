#!/usr/bin/env python
"""CLI entry point for agentpipe pipelines."""

import asyncio
import json
import logging
import os
import sys
from typing import Any, Optional

import click
from dotenv import load_dotenv

from agentpipe import http_pool
from agentpipe.cache.serializer import serialize_json
from agentpipe.errors import PipelineError
from agentpipe.pipeline import (
    ExecutionContext,
    ExecutionMode,
    PipelineEngine,
    RunResult,
    create_default_registry,
    error_envelope,
    load_pipeline,
)

load_dotenv()

logger = logging.getLogger("agentpipe.cli")


def _configure_logging() -> None:
    level = os.getenv("LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _parse_input(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    text = sys.stdin.read() if raw == "-" else raw
    try:
        return json.loads(text)
    except ValueError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="--input-json") from e


def _emit(result: RunResult, mode: ExecutionMode) -> None:
    if mode is ExecutionMode.TOOL:
        click.echo(serialize_json(result.to_envelope()))
        return

    if result.cancelled:
        click.echo("Cancelled.")
        return
    for item in result.items:
        click.echo(serialize_json(item, pretty=True))
    if result.halted:
        click.echo(f"\n⏸  {result.halt.prompt or 'Approval required'}", err=True)
        click.echo(f"   {len(result.halt.pending_items)} item(s) pending", err=True)
        click.echo(f"   Resume with: agentpipe resume --approve yes --token {result.resume_token}", err=True)


async def _execute(coro_factory):
    await http_pool.init_http_client()
    try:
        return await coro_factory()
    finally:
        await http_pool.close_http_client()


def _run_engine(mode: ExecutionMode, coro_factory) -> None:
    try:
        result = asyncio.run(_execute(coro_factory))
    except PipelineError as e:
        logger.debug(f"Pipeline failed: {e}", exc_info=True)
        if mode is ExecutionMode.TOOL:
            click.echo(serialize_json(error_envelope(e)))
        else:
            click.echo(f"❌ {e.kind}: {e.message}", err=True)
        sys.exit(1)
    _emit(result, mode)


@click.group()
def cli():
    """agentpipe - typed, resumable pipelines with approval gates."""
    _configure_logging()


@cli.command()
@click.argument("pipeline_file", type=click.Path(dir_okay=False))
@click.option("--input-json", type=str, default=None, help="Initial items as JSON ('-' reads stdin)")
@click.option(
    "--mode",
    type=click.Choice(["tool", "human"]),
    default="tool",
    help="tool: JSON envelope output; human: interactive approvals",
)
@click.option(
    "--embed-pipeline/--no-embed-pipeline",
    default=True,
    help="Embed the stage list in resume tokens",
)
def run(pipeline_file: str, input_json: Optional[str], mode: str, embed_pipeline: bool):
    """Run a pipeline file from its first stage."""
    exec_mode = ExecutionMode(mode)
    initial_items = _parse_input(input_json)
    registry = create_default_registry()
    engine = PipelineEngine(registry, embed_pipeline=embed_pipeline)
    ctx = ExecutionContext(mode=exec_mode, registry=registry)

    async def go():
        pipeline = load_pipeline(pipeline_file)
        return await engine.run(pipeline, initial_items=initial_items, ctx=ctx)

    _run_engine(exec_mode, go)


@cli.command()
@click.option("--token", required=True, help="Resume token from a needs_approval result")
@click.option("--approve", type=click.Choice(["yes", "no"]), required=True, help="Approval decision")
@click.option(
    "--pipeline-file",
    type=click.Path(dir_okay=False),
    default=None,
    help="Original pipeline (required when the token does not embed one)",
)
def resume(token: str, approve: str, pipeline_file: Optional[str]):
    """Resume a halted pipeline."""
    registry = create_default_registry()
    engine = PipelineEngine(registry)
    ctx = ExecutionContext(mode=ExecutionMode.TOOL, registry=registry)

    async def go():
        pipeline = load_pipeline(pipeline_file) if pipeline_file else None
        return await engine.resume(token, approved=approve == "yes", ctx=ctx, pipeline=pipeline)

    _run_engine(ExecutionMode.TOOL, go)


@cli.command()
def stages():
    """List registered stages."""
    registry = create_default_registry()
    for entry in registry.describe():
        click.echo(f"{entry['name']:<18} {entry['kind']:<14} {entry['description']}")


if __name__ == "__main__":
    cli()
