"""
Environment-driven database configuration for crawl processes.

Crawlers, the retry scheduler and Alembic all resolve the same URL, so a
single misconfigured variable fails every entry point the same way.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from pathlib import Path

from sqlalchemy.engine import make_url

PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILES = (".env", ".env.local")

_CLOUD_LIKE_ENVIRONMENTS = frozenset({"prod", "production", "staging", "cloud"})
_POSTGRES_SCHEMES = ("postgres://", "postgresql://", "postgresql+psycopg2://")


def _env_paths(root: Path) -> list[Path]:
    paths = [root / name for name in ENV_FILES]
    explicit = os.getenv("CRAWL_ENV_FILE")
    if explicit:
        paths.append(Path(explicit))
    return paths


def load_env_files(paths: Iterable[Path] | None = None) -> list[Path]:
    """
    Load KEY=VALUE pairs from `.env`, `.env.local` and `CRAWL_ENV_FILE`.

    Existing process environment variables are not overwritten, and a
    leading ``export`` is accepted so shell env files can be reused.
    Returns the files that were read.
    """

    loaded: list[Path] = []
    for env_path in paths if paths is not None else _env_paths(PROJECT_ROOT):
        if not env_path.is_file():
            continue
        loaded.append(env_path)

        for raw_line in env_path.read_text(encoding="utf-8").splitlines():
            line = raw_line.strip()
            if line.startswith("export "):
                line = line[len("export "):].lstrip()
            if not line or line.startswith("#") or "=" not in line:
                continue

            key, value = line.split("=", 1)
            key = key.strip()
            value = value.strip().strip('"').strip("'")
            if key and key not in os.environ:
                os.environ[key] = value
    return loaded


def normalize_postgres_url(url: str) -> str:
    """
    Rewrite postgres URLs to the psycopg (v3) driver form.
    """

    url = url.strip()
    for scheme in _POSTGRES_SCHEMES:
        if url.startswith(scheme):
            return "postgresql+psycopg://" + url[len(scheme):]
    return url


def redact_database_url(url: str) -> str:
    """
    Render a URL with its password masked, for log lines.
    """

    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:  # noqa: BLE001
        return "<unparseable database url>"


def is_cloud_environment(environ: Mapping[str, str] | None = None) -> bool:
    environ = os.environ if environ is None else environ
    return environ.get("ENVIRONMENT", "local").strip().lower() in _CLOUD_LIKE_ENVIRONMENTS


def resolve_database_url(environ: Mapping[str, str] | None = None) -> str:
    """
    Resolve the crawl database URL.

    Priority:
    1) DATABASE_URL
    2) CLOUD_DATABASE_URL when ENVIRONMENT is cloud-like
    3) LOCAL_DATABASE_URL
    """

    if environ is None:
        load_env_files()
        environ = os.environ

    candidates = ["DATABASE_URL"]
    if is_cloud_environment(environ):
        candidates.append("CLOUD_DATABASE_URL")
    candidates.append("LOCAL_DATABASE_URL")

    for key in candidates:
        value = (environ.get(key) or "").strip()
        if value:
            return normalize_postgres_url(value)

    raise RuntimeError(
        "No crawl database configured. Set DATABASE_URL, or configure "
        "LOCAL_DATABASE_URL / CLOUD_DATABASE_URL."
    )
