"""Per-check accumulator driven one log line at a time."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field

from autoprat_core.logs.patterns import PatternTable, match_error_line

MAX_ERROR_LINES = 20
MAX_LINES = 1000
MAX_LINE_LENGTH = 500
TRUNCATION_MARKER = "... (truncated)"


@dataclass
class TaskState:
    """Error lines collected from one check's log stream.

    consume() is called for each line in stream order and returns False once
    either cap is reached: MAX_ERROR_LINES matches (a TRUNCATION_MARKER line is
    then appended) or MAX_LINES lines examined. Both caps mean "stop reading
    this log", not failure.
    """

    check_name: str
    patterns: PatternTable = field(repr=False)
    line_count: int = 0
    error_count: int = 0
    error_lines: list[str] = field(default_factory=list)
    pattern_matches: Counter[str] = field(default_factory=Counter)

    def consume(self, line: str) -> bool:
        self.line_count += 1

        stripped = line.strip()
        if not stripped or len(line) > MAX_LINE_LENGTH:
            return self.line_count < MAX_LINES

        pattern_name = match_error_line(line, self.patterns)
        if pattern_name is not None:
            self.error_lines.append(stripped)
            self.error_count += 1
            self.pattern_matches[pattern_name] += 1
            if self.error_count >= MAX_ERROR_LINES:
                self.error_lines.append(TRUNCATION_MARKER)
                return False

        return self.line_count < MAX_LINES
