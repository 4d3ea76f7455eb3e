"""Read-only access to the static profile document."""

from __future__ import annotations

import json
from importlib import resources
from pathlib import Path
from typing import Any

from .config import Settings, get_settings
from .errors import ProfileLoadError

_SECTIONS: tuple[str, ...] = ("profile", "projects", "writing", "experience", "skills")


class ProfileStore:
    """Static profile data, loaded once and never mutated.

    Sequences are returned in document order so filters preserve ordering.
    """

    def __init__(self, document: dict[str, Any]) -> None:
        missing = [name for name in _SECTIONS if name not in document]
        if missing:
            raise ProfileLoadError(f"Profile document is missing sections: {', '.join(missing)}")
        for name in ("projects", "writing", "experience"):
            if not isinstance(document[name], list):
                raise ProfileLoadError(f"Profile section '{name}' must be a list")
        if not isinstance(document["skills"], dict):
            raise ProfileLoadError("Profile section 'skills' must be an object")
        self._document = document

    @classmethod
    def from_path(cls, path: str | Path) -> ProfileStore:
        try:
            raw = Path(path).expanduser().read_text(encoding="utf-8")
        except OSError as exc:
            raise ProfileLoadError(f"Cannot read profile document at {path}: {exc}") from exc
        return cls.from_text(raw, source=str(path))

    @classmethod
    def from_text(cls, raw: str, *, source: str = "<text>") -> ProfileStore:
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ProfileLoadError(f"Profile document {source} is not valid JSON: {exc}") from exc
        if not isinstance(document, dict):
            raise ProfileLoadError(f"Profile document {source} must be a JSON object")
        return cls(document)

    @classmethod
    def packaged(cls) -> ProfileStore:
        raw = resources.files("resume_mcp").joinpath("data/profile.json").read_text(encoding="utf-8")
        return cls.from_text(raw, source="resume_mcp/data/profile.json")

    @property
    def profile(self) -> dict[str, Any]:
        return self._document["profile"]

    @property
    def projects(self) -> list[dict[str, Any]]:
        return self._document["projects"]

    @property
    def writing(self) -> list[dict[str, Any]]:
        return self._document["writing"]

    @property
    def experience(self) -> list[dict[str, Any]]:
        return self._document["experience"]

    @property
    def skills(self) -> dict[str, list[str]]:
        return self._document["skills"]


def load_profile(settings: Settings | None = None) -> ProfileStore:
    """Load the configured profile document, falling back to the packaged sample."""
    resolved = settings or get_settings()
    if resolved.profile.path:
        return ProfileStore.from_path(resolved.profile.path)
    return ProfileStore.packaged()
