"""Exceptions raised while loading notifier settings and input files."""

from typing import List, Optional


class ConfigurationError(Exception):
    """Settings (YAML, environment or a digest file) could not be used.

    Attributes:
        message: One-line summary
        errors: Every problem found, so all of them can be fixed in one pass
        suggestions: Hints printed after the errors
        source: Where the settings came from (file path or "environment")
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[str]] = None,
        suggestions: Optional[List[str]] = None,
        source: Optional[str] = None,
    ):
        self.message = message
        self.errors = list(errors or [])
        self.suggestions = list(suggestions or [])
        self.source = source
        super().__init__(self.render())

    def render(self) -> str:
        """Summary, numbered errors and suggestions as a printable block."""
        header = f"{self.message} ({self.source})" if self.source else self.message
        lines = [header]

        if self.errors:
            lines.append("")
            lines.append(f"{len(self.errors)} problem(s) found:")
            lines.extend(f"  {n}. {error}" for n, error in enumerate(self.errors, 1))

        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            lines.extend(f"  - {hint}" for hint in self.suggestions)

        return "\n".join(lines)
