from __future__ import annotations
from typing import Iterable

from .errors import ConfigError


def parse_targets(lines: Iterable[str] | str, dedupe: bool = False) -> list[str]:
    """
    Cleans raw input into the ordered target list.
    Blank lines and `#` comments are skipped; with dedupe=True repeated URLs
    keep only their first position.
    """
    if isinstance(lines, str):
        lines = lines.splitlines()

    urls = []
    for line in lines:
        s = line.strip()
        if not s or s.startswith("#"):
            continue
        urls.append(s)

    if dedupe:
        urls = list(dict.fromkeys(urls))
    return urls


def load_targets(path: str, dedupe: bool = False) -> list[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return parse_targets(f, dedupe=dedupe)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Failed to read file {path}: {e}") from e
