"""Source backends and a unified registry."""

from pathlib import Path

from ..provider import SessionProvider
from .amp import AmpProvider
from .claude_code import ClaudeCodeProvider
from .codex import CodexProvider
from .droid import DroidProvider
from .gemini import GeminiProvider
from .junie import JunieProvider
from .kilo_code import KiloCodeProvider
from .opencode import OpenCodeProvider

# Source enumeration order
ALL_PROVIDERS: list[type[SessionProvider]] = [
    ClaudeCodeProvider,
    OpenCodeProvider,
    CodexProvider,
    AmpProvider,
    JunieProvider,
    GeminiProvider,
    DroidProvider,
    KiloCodeProvider,
]


def get_providers(home: Path | None = None) -> list[SessionProvider]:
    """Return one provider per source, in enumeration order."""
    return [ProviderClass(home=home) for ProviderClass in ALL_PROVIDERS]


def get_available_providers(home: Path | None = None) -> list[SessionProvider]:
    """Return the providers whose data directory exists on this machine."""
    providers = []
    for provider in get_providers(home):
        try:
            if provider.is_available():
                providers.append(provider)
        except OSError:
            continue
    return providers
