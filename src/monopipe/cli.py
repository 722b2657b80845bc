# cli.py
from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
import yaml

from monopipe.basebuild import BaseBuildResolver
from monopipe.buildkite.client import BuildkiteClient
from monopipe.cache import CacheStore, FileHasher, component_key, content_hash
from monopipe.errors import (
    CacheUnavailableError,
    FatalConfigError,
    MonopipeError,
    SettingsError,
)
from monopipe.git_facts.git import Git
from monopipe.matching import FileIndex
from monopipe.model import CacheKey, Component, Overrides
from monopipe.pipeline import merge_pipeline
from monopipe.registry import load_all, load_one
from monopipe.runner import evaluate
from monopipe.settings import Settings
from monopipe.ui.console import Console, get_console, set_console

ROOT_OPTION = click.option(
    "--root",
    default=".",
    show_default=True,
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Repository root containing .buildkite/pipeline.*.yml",
)


def _fail(title: str, exc: BaseException, suggestion: Optional[str] = None) -> NoReturn:
    console = get_console()
    console.print_error(title, str(exc), suggestion=suggestion)
    if console.debug:
        console.print_exception(exc)
    sys.exit(1)


def _make_resolver(settings: Settings, root: Path) -> BaseBuildResolver:
    settings.require("organization", "api_token")
    client = BuildkiteClient(
        organization=settings.organization or "",
        pipeline=settings.pipeline or "",
        token=settings.api_token or "",
        base_url=settings.api_url,
    )
    return BaseBuildResolver(Git(root), client)


def _make_store(settings: Settings) -> CacheStore:
    return CacheStore.from_url(settings.redis_url, prefix=settings.cache_prefix)


def _load_component(root: Path, name: str) -> Component:
    try:
        component = load_one(root, name)
    except FatalConfigError as e:
        _fail("Invalid component configuration", e)
    if component is None:
        get_console().print_error(
            "Unknown component",
            f"Could not read a component named {name!r}",
            suggestion=f"Check that .buildkite/pipeline.{name}.yml exists and is valid:\n  monopipe list",
        )
        sys.exit(1)
    return component


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """monopipe: select which monorepo components to build, and merge their pipelines."""
    # Initialize console with debug flag
    console = Console(debug=debug)
    set_console(console)
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@ROOT_OPTION
@click.option(
    "--output",
    "-o",
    default="-",
    show_default=True,
    type=click.File("w"),
    help="Where to write the merged pipeline YAML",
)
def pipeline(root: Path, output):
    """Output a merged pipeline.yml for the current Buildkite build."""
    console = get_console()

    try:
        settings = Settings.from_env()
        env = settings.build_environment()
        resolver = _make_resolver(settings, root)
        store = _make_store(settings)

        outcomes = evaluate(
            root,
            env,
            Overrides.from_env(os.environ),
            git=resolver.git,
            resolver=resolver,
            cache_store=store,
            artifact_command=settings.artifact_command,
            max_workers=settings.max_workers,
        )
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except SettingsError as e:
        _fail("Missing configuration", e, suggestion="monopipe pipeline is meant to run inside a Buildkite job.")
    except FatalConfigError as e:
        _fail("Invalid component configuration", e)
    except MonopipeError as e:
        _fail("Could not generate pipeline", e)

    console.print_evaluation_started(env.branch, env.commit, len(outcomes))
    console.print_plan(outcomes)

    click.echo(yaml.safe_dump(merge_pipeline(outcomes), sort_keys=False), file=output, nl=False)


@cli.command("hash")
@click.argument("component_name")
@ROOT_OPTION
def hash_command(component_name: str, root: Path):
    """Print the content hash of a component's matching files."""
    component = _load_component(root, component_name)
    try:
        digest = content_hash(component, FileIndex(root), FileHasher(root))
    except OSError as e:
        _fail("Could not hash component files", e)
    click.echo(digest)


@cli.command("record-success")
@click.argument("component_name")
@click.option("--build-id", default=None, help="Build to record (defaults to $BUILDKITE_BUILD_ID)")
@ROOT_OPTION
def record_success(component_name: str, build_id: Optional[str], root: Path):
    """Record that this build built a pure component's current content."""
    console = get_console()
    component = _load_component(root, component_name)

    try:
        settings = Settings.from_env()
        settings.require("pipeline")
        build_id = build_id or settings.build_id
        if not build_id:
            raise SettingsError("Missing required environment variables: BUILDKITE_BUILD_ID (or pass --build-id)")

        digest = content_hash(component, FileIndex(root), FileHasher(root))
        key = CacheKey(component_key(settings.pipeline or "", component.name), digest)
        _make_store(settings).put(key, build_id)
    except SettingsError as e:
        _fail("Missing configuration", e)
    except CacheUnavailableError as e:
        _fail("Cache store unavailable", e)
    except OSError as e:
        _fail("Could not hash component files", e)

    if not component.pure:
        console.print_info(f"Note: {component.name} is not marked pure; the entry will not be used until it is.")
    console.print_info(f"Recorded {key.component} @ {digest[:12]}... -> build {build_id}")


@cli.command("list")
@ROOT_OPTION
def list_components(root: Path):
    """List components in the order their pipelines are merged."""
    try:
        components = load_all(root)
    except FatalConfigError as e:
        _fail("Invalid component configuration", e)

    Console(debug=get_console().debug, stream=sys.stdout).print_components(components)


if __name__ == "__main__":
    cli()
