"""Error-line pattern table for CI build logs.

The table is ordered. classify() reports the FIRST pattern that matches, so a
line that fits several entries is always attributed to the earliest one.
Pattern names feed the per-check match histogram logged at DEBUG level, which
is how noisy entries get spotted and reordered.

Build the table once (PatternTable.default(), optionally extended with
user-defined patterns from .autoprat.yml) and share it between tasks; it is
immutable.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

# (name, regex) in match-priority order.
DEFAULT_PATTERNS: tuple[tuple[str, str], ...] = (
    # Generic error keywords.
    ("error-keyword", r"(?i)error:"),
    ("failed-keyword", r"(?i)failed:"),
    ("failure-keyword", r"(?i)failure:"),
    ("fatal-keyword", r"(?i)fatal:"),
    ("panic-keyword", r"(?i)panic:"),
    ("error-prefix", r"^E "),
    ("fail-prefix", r"^FAIL "),
    # Structured logging.
    ("logrus-error", r"level=error"),
    ("zap-json-error", r'"level":"error"'),
    ("java-spring-error", r"ERROR \["),
    ("structured-logger-error", r"(?i)error \|"),
    # Kubernetes.
    ("k8s-warning-events", r"Warning \w+"),
    ("k8s-crashloop", r"(?i)crashloopbackoff"),
    ("k8s-imagepull", r"(?i)imagepullbackoff"),
    ("k8s-evicted", r"(?i)evicted"),
    # CI platforms.
    ("github-actions-error", r"::error::"),
    ("make-error", r"make: \*\*\*.*Error \d+"),
    ("docker-daemon-error", r"Error response from daemon"),
    ("build-failed", r"(?i)build failed"),
    ("test-failed", r"(?i)test failed"),
    # GitHub Actions runner.
    ("github-actions-annotation", r"##\[error\]"),
    ("process-exit-code", r"Process completed with exit code [1-9]"),
    ("runner-error", r"(?i)runner.*error"),
    ("workflow-failed", r"(?i)workflow.*failed"),
    ("action-failed", r"(?i)action.*failed"),
    # Prow / Tide.
    ("prow-component-error", r"level=error.*prow"),
    ("tide-component-error", r"level=error.*tide"),
    ("prow-general-error", r"(?i)prow.*error"),
    ("tide-general-error", r"(?i)tide.*error"),
    ("presubmit-failed", r"(?i)presubmit.*failed"),
    ("postsubmit-failed", r"(?i)postsubmit.*failed"),
    ("periodic-failed", r"(?i)periodic.*failed"),
    ("prowjob-failed", r"(?i)prowjob.*failed"),
    ("prow-hook-error", r"(?i)hook.*error"),
    ("prow-deck-error", r"(?i)deck.*error"),
    ("prow-spyglass-error", r"(?i)spyglass.*error"),
    ("prow-crier-error", r"(?i)crier.*error"),
    ("prow-sinker-error", r"(?i)sinker.*error"),
    # Other CI systems.
    ("jenkins-error", r"(?i)jenkins.*error"),
    ("tekton-error", r"(?i)tekton.*error"),
    ("gitlab-error", r"(?i)gitlab.*error"),
    ("circleci-error", r"(?i)circleci.*error"),
    ("travis-error", r"(?i)travis.*error"),
    ("buildkite-error", r"(?i)buildkite.*error"),
    ("concourse-error", r"(?i)concourse.*error"),
    # Go.
    ("go-error-field", r'err="[^"]*"'),
    ("go-cannot-error", r"(?i)cannot "),
    # Runtime errors.
    ("exception-logs", r"(?i)exception:"),
    ("python-traceback", r"(?i)traceback"),
    ("stack-trace", r"(?i)stack trace"),
)

# Checked only when no table entry matches.
EXIT_CODE_PATTERN = "exit-code"
_EXIT_CODE_RE = re.compile(r"(?i)exit code.*[1-9]")


@dataclass(frozen=True)
class PatternTable:
    patterns: tuple[tuple[str, re.Pattern[str]], ...]

    @classmethod
    def build(cls, entries: Iterable[tuple[str, str]]) -> PatternTable:
        """Compile ``(name, regex)`` entries, keeping their order."""
        compiled = []
        for name, regex in entries:
            try:
                compiled.append((name, re.compile(regex)))
            except (re.error, TypeError) as e:
                raise ValueError(f"Invalid error pattern {name!r}: {e}") from e
        return cls(tuple(compiled))

    @classmethod
    def default(cls, extra: Mapping[str, str] | None = None) -> PatternTable:
        """The built-in table, with any ``extra`` patterns appended after it."""
        entries = list(DEFAULT_PATTERNS)
        if extra:
            entries.extend(extra.items())
        return cls.build(entries)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.patterns]

    def classify(self, line: str) -> str | None:
        """Name of the first pattern that matches ``line``, or None."""
        for name, regex in self.patterns:
            if regex.search(line):
                return name
        return None

    def __len__(self) -> int:
        return len(self.patterns)


def match_error_line(line: str, table: PatternTable) -> str | None:
    """Classify ``line``, also treating "exit code <non-zero>" as an error."""
    name = table.classify(line)
    if name is None and _EXIT_CODE_RE.search(line):
        return EXIT_CODE_PATTERN
    return name
