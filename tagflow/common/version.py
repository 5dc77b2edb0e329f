"""Release version value type used when computing stable tag names."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from .errors import ConfigurationError

_COMPONENT = re.compile(r"^\d+$")


@dataclass(frozen=True)
class ReleaseVersion:
    """
    A release version such as ``v1.2.3``.

    Parsing is lenient about missing components: ``1.2`` is accepted and keeps
    ``full == major_minor == "1.2"``. Non-numeric components are rejected.
    """

    major: int
    minor: Optional[int] = None
    patch: Optional[int] = None

    @classmethod
    def parse(cls, raw: str) -> "ReleaseVersion":
        if raw is None:
            raise ConfigurationError("Release version is required")
        text = raw.strip()
        if text[:1] in ("v", "V"):
            text = text[1:]
        if not text:
            raise ConfigurationError(f"Malformed release version: {raw!r}")

        parts = text.split(".")
        if len(parts) > 3 or not all(_COMPONENT.match(part) for part in parts):
            raise ConfigurationError(
                f"Malformed release version: {raw!r} (expected numeric MAJOR[.MINOR[.PATCH]])"
            )

        numbers = [int(part) for part in parts]
        return cls(
            major=numbers[0],
            minor=numbers[1] if len(numbers) > 1 else None,
            patch=numbers[2] if len(numbers) > 2 else None,
        )

    @property
    def full(self) -> str:
        return ".".join(str(n) for n in (self.major, self.minor, self.patch) if n is not None)

    @property
    def major_minor(self) -> str:
        if self.minor is None:
            return str(self.major)
        return f"{self.major}.{self.minor}"

    @property
    def major_str(self) -> str:
        return str(self.major)

    def __str__(self) -> str:
        return f"v{self.full}"
