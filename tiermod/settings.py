"""Runtime settings for tiermod.

Settings come from environment variables, optionally overlaid by a YAML
file named in ``TIERMOD_SETTINGS_FILE``.  Keys in the YAML file use the
field names of :class:`Settings`::

    data_dir: /var/lib/tiermod
    classifier: anthropic
    http_timeout: 3.5
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path

import yaml

CLASSIFIERS = ("content_safety", "anthropic")


@dataclass
class Settings:
    """Connection details and tuning knobs for the moderation services."""

    data_dir: str = ""
    virustotal_api_key: str = ""
    content_safety_endpoint: str = ""
    content_safety_key: str = ""
    anthropic_api_key: str = ""
    classifier: str = "content_safety"
    http_timeout: float = 5.0
    http_attempts: int = 1
    link_cache_ttl: float = 6 * 60 * 60
    link_cache_size: int = 2048

    def __post_init__(self) -> None:
        if not self.data_dir:
            self.data_dir = str(Path.home() / ".tiermod")
        if self.classifier not in CLASSIFIERS:
            raise ValueError(
                f"Unknown classifier {self.classifier!r}; expected one of {', '.join(CLASSIFIERS)}"
            )
        self.http_timeout = float(self.http_timeout)
        self.http_attempts = max(1, int(self.http_attempts))
        self.link_cache_ttl = float(self.link_cache_ttl)
        self.link_cache_size = int(self.link_cache_size)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from the environment (and the optional YAML file)."""
        env = os.environ if environ is None else environ
        values: dict = {}

        settings_file = env.get("TIERMOD_SETTINGS_FILE", "")
        if settings_file:
            values.update(load_settings_file(settings_file))

        mapping = {
            "TIERMOD_DATA_DIR": "data_dir",
            "VIRUSTOTAL_API_KEY": "virustotal_api_key",
            "CONTENT_SAFETY_ENDPOINT": "content_safety_endpoint",
            "CONTENT_SAFETY_KEY": "content_safety_key",
            "ANTHROPIC_API_KEY": "anthropic_api_key",
            "TIERMOD_CLASSIFIER": "classifier",
            "TIERMOD_HTTP_TIMEOUT": "http_timeout",
            "TIERMOD_HTTP_ATTEMPTS": "http_attempts",
            "TIERMOD_LINK_CACHE_TTL": "link_cache_ttl",
            "TIERMOD_LINK_CACHE_SIZE": "link_cache_size",
        }
        for var, name in mapping.items():
            if env.get(var):
                values[name] = env[var]
        return cls(**values)


def load_settings_file(path: str | Path) -> dict:
    """Read a YAML settings file, keeping only known field names."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    known = {f.name for f in fields(Settings)}
    return {k: v for k, v in data.items() if k in known}
