"""Home directory and per-source data directory resolution."""

import os
from pathlib import Path


def get_home() -> Path:
    """Return the home directory the tools write their sessions under."""
    env = os.environ.get("AISESSIONS_HOME")
    if env:
        return Path(env)

    return Path.home()


def get_claude_code_path(home: Path) -> Path:
    """Return the path to Claude Code's projects directory."""
    return home / ".claude" / "projects"


def get_opencode_path(home: Path) -> Path:
    """Return the path to OpenCode's storage directory."""
    return home / ".local" / "share" / "opencode" / "storage"


def get_codex_paths(home: Path) -> list[Path]:
    """Return every Codex sessions root: the CLI's own plus IDE-managed ones."""
    paths = [home / ".codex" / "sessions"]
    jetbrains = home / ".cache" / "JetBrains"
    if jetbrains.is_dir():
        paths.extend(sorted(jetbrains.glob("*/aia/codex/sessions")))
    return paths


def get_amp_path(home: Path) -> Path:
    """Return the path to Amp's threads directory."""
    return home / ".local" / "share" / "amp" / "threads"


def get_junie_path(home: Path) -> Path:
    """Return the path to Junie's sessions directory."""
    return home / ".junie" / "sessions"


def get_gemini_path(home: Path) -> Path:
    """Return the path to Gemini CLI's per-project temp directory."""
    return home / ".gemini" / "tmp"


def get_droid_path(home: Path) -> Path:
    """Return the path to Droid's (Factory) sessions directory."""
    return home / ".factory" / "sessions"


def get_kilo_code_path(home: Path) -> Path:
    """Return the path to Kilo Code CLI's data directory."""
    return home / ".kilocode" / "cli"
