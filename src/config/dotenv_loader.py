"""
Explicit dotenv loader.

Outside prod, `.env` is loaded first and `.env.local` second (local overrides).
With `ENVIRONMENT=prod` nothing is loaded; the deployment injects variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable

from dotenv import load_dotenv

DOTENV_FILES = (".env", ".env.local")


def _is_prod_env() -> bool:
    return (os.getenv("ENVIRONMENT") or "prod").strip().lower() == "prod"


def load_dotenv_files(
    *,
    repo_root: Path | None = None,
    filenames: Iterable[str] = DOTENV_FILES,
) -> list[Path]:
    """
    Load dotenv files for local/dev usage. Returns the files actually loaded.

    The first file never overrides variables already in the environment;
    later files do.
    """
    if _is_prod_env():
        return []

    root = repo_root or Path(__file__).resolve().parent.parent.parent
    loaded: list[Path] = []
    for index, name in enumerate(filenames):
        path = root / name
        if path.exists():
            load_dotenv(dotenv_path=path, override=index > 0)
            loaded.append(path)
    return loaded
