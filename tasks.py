"""Invoke tasks for keynav development.

Every task shells out to `uv` so the virtual environment, linters and the test
runner resolve from the same lock. `redis-up`/`redis-down` manage a throwaway
Redis Stack container for the integration tests in `tests/test_redis_gateway.py`.
"""

from __future__ import annotations

import shlex
import shutil
from collections.abc import Mapping, Sequence
from pathlib import Path

from invoke import Collection, Context, task

PROJECT_ROOT = Path(__file__).parent
DIST_DIR = PROJECT_ROOT / "dist"
REDIS_CONTAINER = "keynav-redis"
REDIS_IMAGE = "redis/redis-stack-server:latest"
INTEGRATION_URL = "redis://127.0.0.1:6379"


def _run_uv(
    ctx: Context,
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
) -> None:
    """Run `uv` with ``args``, layering ``env`` over the configured environment."""
    run_env = dict(ctx.config.run.env or {})
    if env:
        run_env.update(env)
    ctx.run(shlex.join(("uv", *args)), echo=True, pty=True, env=run_env)


@task
def sync(ctx: Context, dev: bool = True) -> None:
    """Install keynav and, by default, its development extras."""
    args = ["sync"]
    if dev:
        args.extend(["--extra", "dev"])
    _run_uv(ctx, args)


@task(help={"clean": "Remove existing artifacts from dist/ before building."})
def build(ctx: Context, clean: bool = False) -> None:
    """Build sdist and wheel into dist/."""
    if clean and DIST_DIR.exists():
        shutil.rmtree(DIST_DIR)
    _run_uv(ctx, ["build"])


@task(
    help={
        "k": "pytest -k expression for test selection.",
        "integration": "Also run tests against the local Redis started by redis-up.",
        "options": "Additional CLI flags forwarded verbatim to pytest.",
    }
)
def tests(ctx: Context, k: str = "", integration: bool = False, options: str = "") -> None:
    """Run the pytest suite."""
    args: list[str] = ["run", "pytest"]
    if k:
        args.extend(["-k", k])
    if options:
        args.extend(shlex.split(options))
    env = {"KEYNAV_TEST_REDIS_URL": INTEGRATION_URL} if integration else None
    _run_uv(ctx, args, env=env)


@task(help={"fix": "Apply auto-fixes where possible (ruff --fix)."})
def lint(ctx: Context, fix: bool = False) -> None:
    """Check formatting and lint rules with Ruff."""
    _run_uv(ctx, ["run", "ruff", "format", "--check", "src", "tests"])
    args = ["run", "ruff", "check", "src", "tests"]
    if fix:
        args.append("--fix")
    _run_uv(ctx, args)


@task
def mypy(ctx: Context) -> None:
    """Type-check the package."""
    _run_uv(ctx, ["run", "mypy", "src"])


@task(name="redis-up")
def redis_up(ctx: Context) -> None:
    """Start a disposable Redis Stack container (JSON module included) on port 6379."""
    ctx.run(
        f"docker run -d --rm --name {REDIS_CONTAINER} -p 6379:6379 {REDIS_IMAGE}",
        echo=True,
    )


@task(name="redis-down")
def redis_down(ctx: Context) -> None:
    """Stop the container started by redis-up."""
    ctx.run(f"docker stop {REDIS_CONTAINER}", echo=True, warn=True)


@task
def ci(ctx: Context) -> None:
    """Run lint, type checks and tests the way CI does."""
    ctx.invoke(lint)
    ctx.invoke(mypy)
    ctx.invoke(tests)


namespace = Collection(sync, build, tests, lint, mypy, redis_up, redis_down, ci)
