"""play-history: import osu! play history into one local database.

Reads the stable client's scores.db/osu!.db and the lazer client's object
store, removes duplicates across capture paths, annotates plays with pp and
replay-derived consistency metrics, and stores everything idempotently.
"""

__version__ = "0.1.0"

from .config import ImportConfig
from .coordinator import ImportCoordinator
from .core.models import Beatmap, HitAnalysis, ImportSummary, Play
from .ingestors import analyze_replay, record_live_play, run_dynamic_import, run_stable_import
from .store import Store

__all__ = [
    "Beatmap",
    "HitAnalysis",
    "ImportConfig",
    "ImportCoordinator",
    "ImportSummary",
    "Play",
    "Store",
    "analyze_replay",
    "record_live_play",
    "run_dynamic_import",
    "run_stable_import",
]
