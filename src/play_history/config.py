"""Import configuration, passed explicitly into every pass."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from .db import DB_FILENAME, DEFAULT_DATA_DIR


def _split_aliases(raw: str) -> list[str]:
    return [a.strip() for a in raw.split(",") if a.strip()]


class ImportConfig(BaseModel):
    """Where the sources live and whose plays to import."""

    data_dir: Path = Field(default_factory=lambda: Path(DEFAULT_DATA_DIR))
    stable_root: Optional[Path] = Field(None, description="Stable client folder holding scores.db")
    dynamic_store: Optional[Path] = Field(None, description="client.realm file or its folder")
    scratch_dir: Optional[Path] = Field(None, description="Where private store copies are made")
    aliases: list[str] = Field(default_factory=list, description="Player names counted as local")
    username: Optional[str] = Field(None, description="Local player name in the dynamic store")
    analyze_replays: bool = True

    @classmethod
    def from_env(cls, **overrides) -> "ImportConfig":
        values: dict = {
            "data_dir": Path(os.environ.get("PLAY_HISTORY_DATA_DIR", DEFAULT_DATA_DIR)),
        }
        if os.environ.get("PLAY_HISTORY_STABLE_PATH"):
            values["stable_root"] = Path(os.environ["PLAY_HISTORY_STABLE_PATH"])
        if os.environ.get("PLAY_HISTORY_LAZER_PATH"):
            values["dynamic_store"] = Path(os.environ["PLAY_HISTORY_LAZER_PATH"])
        if os.environ.get("PLAY_HISTORY_ALIASES"):
            values["aliases"] = _split_aliases(os.environ["PLAY_HISTORY_ALIASES"])
        if os.environ.get("PLAY_HISTORY_USERNAME"):
            values["username"] = os.environ["PLAY_HISTORY_USERNAME"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def db_path(self) -> Path:
        return self.data_dir / DB_FILENAME

    @property
    def scratch(self) -> Path:
        return self.scratch_dir or self.data_dir / "scratch"

    @property
    def alias_names(self) -> list[str]:
        """Configured aliases plus the username, first match wins."""
        names = list(self.aliases)
        if self.username and self.username not in names:
            names.insert(0, self.username)
        return names

    @property
    def scores_db(self) -> Optional[Path]:
        return self.stable_root / "scores.db" if self.stable_root else None

    @property
    def catalog_db(self) -> Optional[Path]:
        return self.stable_root / "osu!.db" if self.stable_root else None

    @property
    def store_file(self) -> Optional[Path]:
        """The store file itself, accepting either the file or its folder."""
        if self.dynamic_store is None:
            return None
        if self.dynamic_store.is_dir():
            return self.dynamic_store / "client.realm"
        return self.dynamic_store

    @property
    def files_root(self) -> Optional[Path]:
        store = self.store_file
        return store.parent / "files" if store else None
