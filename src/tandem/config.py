"""Configuration: frozen Config with layered credential resolution."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from pathlib import Path
import tomllib
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError

from tandem.errors import ConfigurationError, MissingCredentialError
from tandem.models import ProviderKind

load_dotenv()

logger = logging.getLogger(__name__)

CONFIG_HOME_VAR = "TANDEM_CONFIG_HOME"

# Checked in order; the first non-empty value wins.
_API_KEY_ENV_VARS: dict[ProviderKind, tuple[str, ...]] = {
    ProviderKind.PRIMARY: ("OPENAI_API_KEY",),
    ProviderKind.ALTERNATE: ("GOOGLE_API_KEY", "GEMINI_API_KEY"),
}

# Key names inside the persisted config file.
_CONFIG_FILE_KEYS: dict[ProviderKind, str] = {
    ProviderKind.PRIMARY: "openai_api_key",
    ProviderKind.ALTERNATE: "google_api_key",
}


class PersistedSettings(BaseModel):
    """Schema for the user-level ``config.toml``.

    Unknown keys are ignored so the file can be shared with other tools.
    """

    model_config = ConfigDict(extra="ignore")

    openai_api_key: SecretStr | None = None
    google_api_key: SecretStr | None = None


def default_config_path() -> Path:
    """Return the persisted config location, honoring ``TANDEM_CONFIG_HOME``."""
    home = os.environ.get(CONFIG_HOME_VAR)
    if home:
        return Path(home).expanduser() / "config.toml"
    return Path.home() / ".config" / "tandem" / "config.toml"


def load_persisted_settings(path: Path) -> PersistedSettings:
    """Read and validate the persisted config file.

    A missing, unreadable or invalid file yields empty settings: the file is
    the lowest-precedence source and never blocks resolution on its own.
    """
    if not path.exists():
        return PersistedSettings()
    try:
        with path.open("rb") as fh:
            data: Any = tomllib.load(fh)
        return PersistedSettings.model_validate(data)
    except (OSError, tomllib.TOMLDecodeError, ValidationError) as e:
        logger.warning("Ignoring unreadable config file %s: %s", path, type(e).__name__)
        return PersistedSettings()


@dataclass(frozen=True)
class Config:
    """Immutable configuration for tandem routing.

    Keys are resolved lazily, per provider, because the provider is only
    known once the model name has been classified.

    Example:
        config = Config(gemini_api_key="...")
        router = CompletionRouter(config)
    """

    #: Explicit overrides; highest precedence.
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    #: Persisted config file; ``None`` means :func:`default_config_path`.
    config_path: Path | None = None
    use_mock: bool = False
    #: ``False`` uses each provider's non-streaming endpoint.
    stream: bool = True
    model_list_timeout_s: float = 2.0
    default_temperature: float = 0.7
    default_max_output_tokens: int = 2048

    def __post_init__(self) -> None:
        """Validate numeric fields."""
        if self.model_list_timeout_s <= 0:
            raise ConfigurationError(
                f"model_list_timeout_s must be > 0, got {self.model_list_timeout_s}",
                hint="This bounds how long a model-support check waits for the list.",
            )
        if self.default_max_output_tokens < 1:
            raise ConfigurationError(
                "default_max_output_tokens must be ≥ 1, "
                f"got {self.default_max_output_tokens}",
            )
        if not 0.0 <= self.default_temperature <= 2.0:
            raise ConfigurationError(
                "default_temperature must be in [0, 2], "
                f"got {self.default_temperature}",
            )

    def _override(self, kind: ProviderKind) -> str | None:
        if kind is ProviderKind.PRIMARY:
            return self.openai_api_key
        if kind is ProviderKind.ALTERNATE:
            return self.gemini_api_key
        raise ConfigurationError(f"Unknown provider: {kind!r}")

    def _persisted_key(self, kind: ProviderKind) -> str | None:
        settings = load_persisted_settings(self.config_path or default_config_path())
        secret = getattr(settings, _CONFIG_FILE_KEYS[kind])
        if secret is None:
            return None
        return secret.get_secret_value() or None

    def key_source(self, kind: ProviderKind) -> tuple[str, str | None]:
        """Return ``(source, key)`` for the first source that yields a key.

        ``source`` is ``"override"``, ``"env:<NAME>"``, ``"config"`` or
        ``"missing"``.
        """
        override = self._override(kind)
        if override:
            return "override", override
        for name in _API_KEY_ENV_VARS[kind]:
            value = os.environ.get(name)
            if value:
                return f"env:{name}", value
        persisted = self._persisted_key(kind)
        if persisted:
            return "config", persisted
        return "missing", None

    def resolve_api_key(self, kind: ProviderKind) -> str:
        """Resolve a key: override, then environment, then the config file."""
        _, key = self.key_source(kind)
        if key:
            return key
        sources = credential_sources(kind)
        raise MissingCredentialError(
            f"{kind.label} API key not found",
            provider=kind.value,
            sources=sources,
            hint=f"Set {' or '.join(sources[1:-1])}, pass {sources[0]}, "
            f"or set {sources[-1]}.",
        )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(openai_api_key={'[REDACTED]' if self.openai_api_key else None}, "
            f"gemini_api_key={'[REDACTED]' if self.gemini_api_key else None}, "
            f"use_mock={self.use_mock}, stream={self.stream})"
        )

    __repr__ = __str__


def credential_sources(kind: ProviderKind) -> tuple[str, ...]:
    """Name every place a key for *kind* is looked up, in precedence order."""
    override = (
        "Config(openai_api_key=...)"
        if kind is ProviderKind.PRIMARY
        else "Config(gemini_api_key=...)"
    )
    return (
        override,
        *_API_KEY_ENV_VARS[kind],
        f"{_CONFIG_FILE_KEYS[kind]} in config.toml",
    )


def mask_secret(value: str) -> str:
    """Show only the first 5 and last 4 characters of a secret."""
    if len(value) <= 12:
        return "*" * len(value)
    return f"{value[:5]}...{value[-4:]}"


@dataclass(frozen=True)
class CredentialStatus:
    """Where a provider's key would come from, with the key masked."""

    provider: str
    source: str
    preview: str | None


def credential_report(config: Config | None = None) -> list[CredentialStatus]:
    """Describe credential resolution for every provider without raising."""
    cfg = config or Config()
    report: list[CredentialStatus] = []
    for kind in ProviderKind:
        source, key = cfg.key_source(kind)
        report.append(
            CredentialStatus(
                provider=kind.value,
                source=source,
                preview=mask_secret(key) if key else None,
            )
        )
    return report
