from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

from linetrack.config import LineTrackConfig, MatchingConfig, TrackerConfig, load_config
from linetrack.models import LineRecord, MatchStrategy, OperationType, ReconcileResult
from linetrack.service import LineDataService
from linetrack.similarity import text_similarity
from linetrack.tracking.matching import MatchingEngine
from linetrack.tracking.tracker import LineTracker
from linetrack.utils.document import MemoryDocument

try:
    __version__ = version("linetrack")
except PackageNotFoundError:
    # Running from a source checkout: read the pinned version bundled alongside this package.
    _version_file = Path(__file__).parent / "VERSION"
    if _version_file.is_file():
        __version__ = _version_file.read_text().strip()
    else:
        __version__ = "0.0.0-dev"

__all__ = [
    "LineDataService",
    "LineTracker",
    "MatchingEngine",
    "MemoryDocument",
    "LineRecord",
    "MatchStrategy",
    "OperationType",
    "ReconcileResult",
    "LineTrackConfig",
    "MatchingConfig",
    "TrackerConfig",
    "load_config",
    "text_similarity",
    "__version__",
]
