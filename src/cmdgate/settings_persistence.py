"""Writing cmdgate settings back to their JSON config files.

`cmdgate config enable`, `exclude add` and friends edit
./.cmdgate/settings.json (or ~/.cmdgate/settings.json with ``--user``).
A hook already running keeps its frozen HookConfig; changes apply from the
next invocation, which re-reads the files through CmdGateSettings.
"""

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel

from cmdgate.config import project_config_path, user_config_path
from cmdgate.logging import Loggers

logger = Loggers.config()

Scope = Literal["project", "user"]

# Never written to disk; the key comes from OPENAI_API_KEY only
SECRET_FIELDS = frozenset({
    "openai_api_key",
})


def _jsonable(data: dict[str, Any]) -> dict[str, Any]:
    return {
        key: str(value) if isinstance(value, Path) else value
        for key, value in data.items()
        if key not in SECRET_FIELDS
    }


class SettingsPersistence:
    """Reads and writes one settings scope.

    Args:
        scope: "project" writes ./.cmdgate/settings.json, "user" writes
            ~/.cmdgate/settings.json.
    """

    def __init__(self, scope: Scope = "project"):
        self.scope = scope

    @property
    def project_config_path(self) -> Path:
        return project_config_path()

    @property
    def user_config_path(self) -> Path:
        return user_config_path()

    @property
    def target_path(self) -> Path:
        return self.user_config_path if self.scope == "user" else self.project_config_path

    def save(self, settings: BaseModel, exclude_defaults: bool = True, path: Path | None = None) -> Path:
        """Write a whole settings object, secrets excluded.

        With ``exclude_defaults`` only values differing from the defaults are
        written, so later default changes still reach the user.
        """
        data = settings.model_dump(exclude_defaults=exclude_defaults, exclude_none=True)
        return self._write(_jsonable(data), path or self.target_path)

    def update(self, changes: dict[str, Any], path: Path | None = None) -> Path:
        """Merge changes into the stored file, keeping its other keys."""
        target = path or self.target_path
        data = self.load(target)
        data.update(changes)
        return self._write(_jsonable(data), target)

    def load(self, path: Path | None = None) -> dict[str, Any]:
        """Stored values of a file, or of the first existing scope file.

        The project file wins over the user file. Missing files read as {}.
        """
        candidates = [path] if path is not None else [self.project_config_path, self.user_config_path]
        for candidate in candidates:
            if candidate.exists():
                return json.loads(candidate.read_text())
        return {}

    def _write(self, data: dict[str, Any], target: Path) -> Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n")
        logger.debug("settings_written", path=str(target), keys=sorted(data))
        return target
