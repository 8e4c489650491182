"""
Contracts between the identity core and the editing engine that renders the document.

The core never touches a rendering technology directly: it enumerates lines, reads
and writes two attributes per line (stable identifier, 1-based index) and listens
to selection-change / text-change events through a DocumentPort.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Union

from linetrack.models import SelectionRange

IDENTIFIER_ATTR = "data-line-uuid"
INDEX_ATTR = "data-line-index"

SOURCE_USER = "user"
SOURCE_API = "api"
SOURCE_SILENT = "silent"


@dataclass(eq=False)
class LineHandle:
    """
    A rendered line. attributes is None while the line has no mounted node,
    in which case attribute reads return nothing and writes are ignored.
    """

    text: str = ""
    attributes: Optional[Dict[str, str]] = field(default_factory=dict)


class DocumentPort(Protocol):
    def lines(self) -> List[LineHandle]: ...

    def line_text(self, line: LineHandle) -> str: ...

    def line_start(self, line: LineHandle) -> int: ...

    def line_index_at(self, offset: int) -> int: ...

    def length(self) -> int: ...

    def is_attached(self, line: LineHandle) -> bool: ...

    def is_ready(self) -> bool: ...

    def get_identifier(self, line: LineHandle) -> Optional[str]: ...

    def set_identifier(self, line: LineHandle, identifier: str) -> None: ...

    def clear_identifier(self, line: LineHandle) -> None: ...

    def get_index(self, line: LineHandle) -> Optional[int]: ...

    def set_index(self, line: LineHandle, index: int) -> None: ...

    def get_selection(self) -> Optional[SelectionRange]: ...

    def set_selection(self, index: int, length: int = 0, silent: bool = False) -> None: ...

    def set_contents(self, text: Union[str, Sequence[str]], source: str = SOURCE_API) -> Any: ...

    def on(self, event: str, handler: Callable[..., Any]) -> None: ...


class Clock(Protocol):
    def sleep(self, seconds: float) -> None: ...


class SystemClock:
    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class ManualClock:
    """Clock that records requested delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)

    @property
    def elapsed(self) -> float:
        return sum(self.delays)
