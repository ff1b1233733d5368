"""Single byte-range parsing for the static asset server."""
import re
from dataclasses import dataclass
from typing import Optional

BYTE_RANGE_RE = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int
    size: int

    @property
    def satisfiable(self) -> bool:
        return not (self.start >= self.size or self.end >= self.size or self.start > self.end)

    @property
    def length(self) -> int:
        return self.end - self.start + 1 if self.satisfiable else 0

    @property
    def content_range(self) -> str:
        if not self.satisfiable:
            return f"bytes */{self.size}"
        return f"bytes {self.start}-{self.end}/{self.size}"


def resolve_byte_range(header: Optional[str], size: int) -> Optional[ByteRange]:
    """Resolve a Range header against a file size.

    Returns None when there is no header or it is not a single
    ``bytes=start-end`` range; the caller then serves the whole file.
    An omitted start means 0 and an omitted end means size - 1.
    """
    if not header:
        return None
    match = BYTE_RANGE_RE.match(header.strip())
    if match is None:
        return None
    start_text, end_text = match.groups()
    start = int(start_text) if start_text else 0
    end = int(end_text) if end_text else size - 1
    return ByteRange(start=start, end=end, size=size)
