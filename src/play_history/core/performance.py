"""Performance (pp) and difficulty annotation.

Calculation itself is delegated to rosu-pp through a narrow backend
protocol. When the backend cannot serve a request the annotator logs it and
returns zeros; an import pass never fails because of pp.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

import rosu_pp_py
from pydantic import BaseModel

from .errors import CollaboratorUnavailable
from .models import PerformanceResult, Play
from .mods import mods_to_bitmask
from .scoring import clock_rate

logger = logging.getLogger(__name__)


class PerformanceRequest(BaseModel):
    """One calculation: a beatmap, mods, judgements and optional overrides."""

    beatmap_path: str
    mods: int = 0
    combo: Optional[int] = None
    n300: Optional[int] = None
    n100: Optional[int] = None
    n50: Optional[int] = None
    misses: Optional[int] = None
    n_geki: Optional[int] = None
    n_katu: Optional[int] = None
    slider_end_hits: Optional[int] = None
    large_tick_hits: Optional[int] = None
    small_tick_hits: Optional[int] = None
    clock_rate: float = 1.0
    ar: Optional[float] = None
    cs: Optional[float] = None
    od: Optional[float] = None
    hp: Optional[float] = None
    # classic (stable) scoring rules instead of lazer's
    classic: bool = True


class PerformanceBackend(Protocol):
    def calculate(self, request: PerformanceRequest) -> PerformanceResult:
        """Raise CollaboratorUnavailable when the request cannot be served."""
        ...


class RosuBackend:
    """rosu-pp backend. Keeps the last parsed beatmap loaded."""

    def __init__(self):
        self._path: Optional[str] = None
        self._beatmap: Optional[rosu_pp_py.Beatmap] = None

    def _load(self, path: str) -> rosu_pp_py.Beatmap:
        if self._beatmap is None or self._path != path:
            try:
                self._beatmap = rosu_pp_py.Beatmap(path=path)
            except Exception as exc:
                self._path = None
                self._beatmap = None
                raise CollaboratorUnavailable(f"Cannot load beatmap {path}: {exc}") from exc
            self._path = path
        return self._beatmap

    def calculate(self, request: PerformanceRequest) -> PerformanceResult:
        beatmap = self._load(request.beatmap_path)
        kwargs = {
            name: value
            for name, value in (
                ("combo", request.combo),
                ("n300", request.n300),
                ("n100", request.n100),
                ("n50", request.n50),
                ("misses", request.misses),
                ("n_geki", request.n_geki),
                ("n_katu", request.n_katu),
                ("slider_end_hits", request.slider_end_hits),
                ("large_tick_hits", request.large_tick_hits),
                ("small_tick_hits", request.small_tick_hits),
                ("ar", request.ar),
                ("cs", request.cs),
                ("od", request.od),
                ("hp", request.hp),
            )
            if value is not None
        }
        try:
            calculator = rosu_pp_py.Performance(
                mods=request.mods,
                clock_rate=request.clock_rate,
                lazer=not request.classic,
                **kwargs,
            )
            attrs = calculator.calculate(beatmap)
        except Exception as exc:
            raise CollaboratorUnavailable(f"rosu-pp failed on {request.beatmap_path}: {exc}") from exc

        difficulty = attrs.difficulty
        return PerformanceResult(
            pp=attrs.pp or 0.0,
            stars=difficulty.stars or 0.0,
            bpm=beatmap.bpm * request.clock_rate,
            ar=getattr(difficulty, "ar", None) or beatmap.ar,
            cs=beatmap.cs,
            od=getattr(difficulty, "od", None) or beatmap.od,
            hp=getattr(difficulty, "hp", None) or beatmap.hp,
            max_combo=difficulty.max_combo or 0,
        )


class PerformanceAnnotator:
    """Fills pp and star rating on plays using a performance backend."""

    def __init__(self, backend: Optional[PerformanceBackend] = None):
        self.backend = backend if backend is not None else RosuBackend()

    def calculate(self, request: PerformanceRequest) -> PerformanceResult:
        try:
            return self.backend.calculate(request)
        except CollaboratorUnavailable as exc:
            logger.warning("Performance unavailable, using placeholders: %s", exc)
            return PerformanceResult()

    def request_for(self, play: Play, beatmap_path: str) -> PerformanceRequest:
        bits = mods_to_bitmask(play.mods)
        # tick counts only mean something for lazer-scored plays
        lazer = "CL" not in play.mods
        return PerformanceRequest(
            beatmap_path=beatmap_path,
            mods=bits,
            combo=play.max_combo,
            n300=play.count300,
            n100=play.count100,
            n50=play.count50,
            misses=play.misses,
            n_geki=play.count_geki,
            n_katu=play.count_katu,
            slider_end_hits=play.slider_tail_hits if lazer else None,
            large_tick_hits=play.large_tick_hits if lazer else None,
            small_tick_hits=play.small_tick_hits if lazer else None,
            clock_rate=clock_rate(bits),
            classic=not lazer,
        )

    def annotate(self, play: Play, beatmap_path: Optional[str] = None) -> Play:
        """Return the play with recomputed pp (and stars when it had none).

        A zero result keeps the play's own values.
        """
        path = beatmap_path or play.map_path
        if not path:
            return play
        result = self.calculate(self.request_for(play, path))
        update: dict = {}
        if result.pp > 0:
            update["pp"] = result.pp
        if not play.stars and result.stars > 0:
            update["stars"] = result.stars
        return play.model_copy(update=update) if update else play

    def beatmap_maximum(self, beatmap_path: str) -> PerformanceResult:
        """Attributes of a full-combo, no-mod play on the beatmap."""
        return self.calculate(PerformanceRequest(beatmap_path=beatmap_path))
