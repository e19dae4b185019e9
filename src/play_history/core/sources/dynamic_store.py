"""Reader for the newer client's schema-evolving object store.

The store binding itself is a collaborator (StoreEngine). This module
handles what surrounds it: copying the live file to a private scratch file,
discovering the schema version, picking the beatmap table shape and turning
raw objects into typed records through the adapters.
"""

from __future__ import annotations

import logging
import re
import shutil
import tempfile
import uuid
from contextlib import ExitStack, contextmanager
from pathlib import Path
from typing import (
    Any,
    Collection,
    ContextManager,
    Iterable,
    Iterator,
    Mapping,
    NamedTuple,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from pydantic import BaseModel, Field

from ..errors import PerRecordDecodeError, SourceNotFound, StructuralDecodeError
from ..models import DynamicBeatmap, DynamicScore
from ..outcomes import OutcomeKind, RecordOutcome
from .adapters import BeatmapAdapter, ScoreAdapter, SetAdapter, local_username_candidates
from .ledger import AliasMatcher

logger = logging.getLogger(__name__)

SCRATCH_PREFIX = "client_import_"
SCRATCH_SUFFIX = ".realm"
PRIMARY_RULESET = "osu"

_VERSION_PATTERNS = (
    re.compile(r"last set version\s+(\d+)", re.IGNORECASE),
    re.compile(r"from schema version\s+(\d+)", re.IGNORECASE),
)


class StoreHandle(Protocol):
    """An open store: the type names it holds and their objects."""

    @property
    def schema(self) -> Collection[str]: ...

    def all(self, type_name: str) -> Iterable[Mapping[str, Any]]: ...


class StoreEngine(Protocol):
    """Binding to the embedded object store.

    ``open`` fails when ``schema_version`` does not match the file, with a
    message naming the version the file was written with. An engine may
    also offer ``read_schema_version(path)``.
    """

    def open(self, path: str, schema_version: int) -> ContextManager[StoreHandle]: ...


@runtime_checkable
class VersionAwareEngine(Protocol):
    def read_schema_version(self, path: str) -> int: ...


class FlatBeatmaps(NamedTuple):
    entries: Iterable[Mapping[str, Any]]


class NestedBeatmaps(NamedTuple):
    sets: Iterable[Mapping[str, Any]]


class NoBeatmaps(NamedTuple):
    pass


TableShape = Union[FlatBeatmaps, NestedBeatmaps, NoBeatmaps]


class DynamicStoreContents(BaseModel):
    """Typed records read out of one store snapshot."""

    schema_version: int = 0
    local_username: Optional[str] = None
    beatmaps: list[DynamicBeatmap] = Field(default_factory=list)
    beatmap_failures: int = 0
    outcomes: list[RecordOutcome] = Field(default_factory=list)

    @property
    def scores(self) -> list[DynamicScore]:
        return [o.value for o in self.outcomes if o.kind is OutcomeKind.ACCEPTED]


def parse_schema_version(message: str) -> int:
    """Pull the file's schema version out of an engine's open failure."""
    for pattern in _VERSION_PATTERNS:
        match = pattern.search(message)
        if match:
            return int(match.group(1))
    raise StructuralDecodeError("store", None, f"cannot determine schema version: {message}")


@contextmanager
def open_store(engine: StoreEngine, path: str) -> Iterator[tuple[StoreHandle, int]]:
    """Open the store at its own schema version.

    Uses the engine's version reader when it has one. Otherwise opens at
    version 0 and, on failure, reopens at the version named in the error.
    """
    with ExitStack() as stack:
        if isinstance(engine, VersionAwareEngine):
            version = engine.read_schema_version(path)
            handle = stack.enter_context(engine.open(path, version))
        else:
            version = 0
            try:
                handle = stack.enter_context(engine.open(path, version))
            except Exception as exc:
                version = parse_schema_version(str(exc))
                logger.debug("Reopening store at schema version %d", version)
                handle = stack.enter_context(engine.open(path, version))
        yield handle, version


def resolve_table_shape(handle: StoreHandle) -> TableShape:
    schema = set(handle.schema)
    if "BeatmapInfo" in schema:
        return FlatBeatmaps(handle.all("BeatmapInfo"))
    if "BeatmapSet" in schema:
        return NestedBeatmaps(handle.all("BeatmapSet"))
    return NoBeatmaps()


def iter_beatmaps(shape: TableShape) -> Iterator[BeatmapAdapter]:
    if isinstance(shape, FlatBeatmaps):
        for entry in shape.entries:
            yield BeatmapAdapter(entry)
    elif isinstance(shape, NestedBeatmaps):
        for beatmap_set in shape.sets:
            for entry in SetAdapter(beatmap_set).beatmaps:
                yield BeatmapAdapter(entry, beatmap_set)


def side_files(path: Path) -> list[Path]:
    """The engine's companion files for a store file."""
    return [
        path.with_name(path.name + suffix)
        for suffix in (".lock", ".note", ".management", ".fresh.lock")
    ]


def remove_scratch(path: Path) -> None:
    for candidate in [path, *side_files(path)]:
        try:
            if candidate.is_dir():
                shutil.rmtree(candidate, ignore_errors=True)
            elif candidate.exists():
                candidate.unlink()
        except OSError as exc:
            logger.warning("Could not remove scratch file %s: %s", candidate, exc)


def clean_stale_scratch(scratch_dir: str | Path) -> int:
    """Remove scratch copies left behind by an interrupted earlier pass."""
    directory = Path(scratch_dir)
    if not directory.is_dir():
        return 0
    removed = 0
    for leftover in directory.glob(f"{SCRATCH_PREFIX}*{SCRATCH_SUFFIX}"):
        remove_scratch(leftover)
        removed += 1
    if removed:
        logger.info("Removed %d stale scratch copies from %s", removed, directory)
    return removed


@contextmanager
def scratch_copy(source: str | Path, scratch_dir: Optional[str | Path] = None) -> Iterator[Path]:
    """Copy the live store to a private scratch file, removed on exit."""
    source_path = Path(source)
    if not source_path.is_file():
        raise SourceNotFound(str(source_path))

    directory = Path(scratch_dir) if scratch_dir else Path(tempfile.gettempdir())
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / f"{SCRATCH_PREFIX}{uuid.uuid4().hex}{SCRATCH_SUFFIX}"
    try:
        try:
            # the game keeps the file open; a plain read shares it
            shutil.copyfile(source_path, target)
        except OSError as exc:
            raise SourceNotFound(str(source_path), str(exc)) from exc
        yield target
    finally:
        remove_scratch(target)


class DynamicStoreReader:
    """Reads beatmaps and the local player's scores from one store snapshot."""

    def __init__(self, engine: StoreEngine, scratch_dir: Optional[str | Path] = None):
        self.engine = engine
        self.scratch_dir = scratch_dir

    def read(
        self,
        store_path: str | Path,
        files_root: Optional[str | Path] = None,
        target_username: Optional[str] = None,
        aliases: Iterable[str] = (),
    ) -> DynamicStoreContents:
        store_path = Path(store_path)
        if files_root is None:
            files_root = store_path.parent / "files"
        if self.scratch_dir:
            clean_stale_scratch(self.scratch_dir)

        with scratch_copy(store_path, self.scratch_dir) as copy:
            with open_store(self.engine, str(copy)) as (handle, version):
                contents = DynamicStoreContents(schema_version=version)
                self._read_beatmaps(handle, files_root, contents)
                self._read_scores(handle, target_username, list(aliases), contents)

        logger.info(
            "Read store v%d: %d beatmaps, %d scores",
            contents.schema_version, len(contents.beatmaps), len(contents.scores),
        )
        return contents

    def _read_beatmaps(
        self, handle: StoreHandle, files_root: str | Path, contents: DynamicStoreContents
    ) -> None:
        for adapter in iter_beatmaps(resolve_table_shape(handle)):
            ruleset = adapter.ruleset
            if ruleset is not None and ruleset != PRIMARY_RULESET:
                continue
            try:
                contents.beatmaps.append(adapter.to_record(files_root))
            except (PerRecordDecodeError, TypeError, ValueError, AttributeError) as exc:
                logger.warning("Skipping unreadable beatmap: %s", exc)
                contents.beatmap_failures += 1

    def _read_scores(
        self,
        handle: StoreHandle,
        target_username: Optional[str],
        aliases: list[str],
        contents: DynamicStoreContents,
    ) -> None:
        if "Score" not in set(handle.schema):
            return
        scores = [ScoreAdapter(obj) for obj in handle.all("Score")]

        local = target_username or None
        if not local and not aliases:
            local = infer_local_username(scores)
        contents.local_username = local
        matches = AliasMatcher([local, *aliases] if local else aliases)

        for score in scores:
            contents.outcomes.append(_score_outcome(score, matches))


def infer_local_username(scores: list[ScoreAdapter]) -> Optional[str]:
    """The single most frequent offline user name, or None on a tie."""
    ranked = sorted(local_username_candidates(scores).items(), key=lambda kv: kv[1], reverse=True)
    if not ranked:
        return None
    if len(ranked) > 1 and ranked[0][1] == ranked[1][1]:
        logger.info("Local player is ambiguous, importing every player's scores")
        return None
    return ranked[0][0]


def _score_outcome(score: ScoreAdapter, matches: AliasMatcher) -> RecordOutcome:
    try:
        ruleset = score.ruleset
        if ruleset is not None and ruleset != PRIMARY_RULESET:
            return RecordOutcome.filtered("ruleset")
        if not matches(score.username):
            return RecordOutcome.filtered("player")
        record = score.to_record()
    except (PerRecordDecodeError, TypeError, ValueError, AttributeError) as exc:
        logger.warning("Skipping unreadable score: %s", exc)
        return RecordOutcome.failed(str(exc))
    if not record.beatmap_hash:
        return RecordOutcome.failed("score has no beatmap hash")
    return RecordOutcome.accepted(record)
