"""Settings for content patching runs."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field

from .logging import configure_logging


class PatchSettings(BaseModel):
    """How content patches are discovered and applied."""

    file_patterns: list[str] = Field(default_factory=lambda: ["*.yml", "*.yaml"])
    log_level: str = "INFO"
    json_logs: bool | None = None  # None: JSON unless attached to a terminal
    # Clear the shared variable store at the start of every full load.
    reset_shared_state: bool = True
    # Re-raise programmer-level failures instead of reporting and continuing.
    stop_on_unhandled: bool = False

    def configure_logging(self) -> None:
        configure_logging(level=self.log_level, json_format=self.json_logs)


def load_settings(path: str | Path) -> PatchSettings:
    """Read settings from a YAML file; missing keys keep their defaults."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    return PatchSettings.model_validate(data)
