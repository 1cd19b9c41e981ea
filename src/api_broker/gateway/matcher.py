# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Resolve an inbound (verb, path) pair to a registered endpoint template.

Templates are parsed once into segments instead of being turned into
free-form regular expressions. A segment is one of:

- literal: ``todos``
- placeholder: ``{id}``, matches one or more non-slash characters
- mixed: ``v{major}.{minor}``, compiled from escaped literal pieces and
  ``[^/]+`` groups

Placeholder names are restricted to ``[A-Za-z_][A-Za-z0-9_]*``, so no
user-supplied text ever reaches the regex engine unescaped.

Match order (first success wins, stored order breaks ties):

1. exact literal comparison of verb and path
2. structural match against each template
3. both passes again after stripping one leading slash from the path
   and from the template path
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from ..errors import NotFoundError, ParameterError

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = r"[A-Za-z_][A-Za-z0-9_]*"
_PLACEHOLDER_RE = re.compile(r"\{(" + PLACEHOLDER_NAME + r")\}")
_BRACE_RE = re.compile(r"[{}]")


@dataclass(frozen=True)
class Segment:
    """One slash-separated piece of a path template."""

    text: str
    pattern: re.Pattern[str]
    names: tuple[str, ...] = ()

    def match(self, value: str) -> dict[str, str] | None:
        if not value:
            return None
        m = self.pattern.fullmatch(value)
        if m is None:
            return None
        return dict(zip(self.names, m.groups(), strict=True))


def _parse_segment(text: str) -> Segment:
    names = tuple(_PLACEHOLDER_RE.findall(text))
    leftover = _PLACEHOLDER_RE.sub("", text)
    if _BRACE_RE.search(leftover):
        raise ValueError(
            f"Invalid placeholder in path segment '{text}': "
            f"names must match {PLACEHOLDER_NAME}"
        )
    if not names:
        return Segment(text, re.compile(re.escape(text)))
    if len(set(names)) != len(names):
        raise ValueError(f"Duplicate placeholder in path segment '{text}'")

    pieces: list[str] = []
    pos = 0
    for m in _PLACEHOLDER_RE.finditer(text):
        pieces.append(re.escape(text[pos : m.start()]))
        pieces.append("([^/]+?)" if m.end() < len(text) else "([^/]+)")
        pos = m.end()
    pieces.append(re.escape(text[pos:]))
    return Segment(text, re.compile("".join(pieces)), names)


@dataclass(frozen=True)
class PathTemplate:
    """Parsed endpoint path template.

    Attributes:
        raw: Template as registered (e.g. ``/todos/{id}``).
        segments: Parsed segments, empty segments dropped.
        leading_slash: Whether raw starts with ``/``.
    """

    raw: str
    segments: tuple[Segment, ...] = field(default=())
    leading_slash: bool = False

    @classmethod
    def parse(cls, raw: str) -> PathTemplate:
        """Parse raw into segments. Raises ValueError on a bad placeholder."""
        parts = [p for p in raw.split("/") if p]
        return cls(raw, tuple(_parse_segment(p) for p in parts), raw.startswith("/"))

    @property
    def names(self) -> list[str]:
        return [name for seg in self.segments for name in seg.names]

    @property
    def normalized(self) -> str:
        """Path without outer slashes and with every placeholder as ``{}``."""
        return "/".join(_PLACEHOLDER_RE.sub("{}", seg.text) for seg in self.segments)

    def match(self, path: str) -> dict[str, str] | None:
        """Match a concrete path structurally. Returns placeholder values or None."""
        if path.startswith("/") != self.leading_slash:
            return None
        body = path[1:] if self.leading_slash else path
        parts = body.split("/") if body else []
        if len(parts) != len(self.segments):
            return None
        values: dict[str, str] = {}
        for segment, part in zip(self.segments, parts, strict=True):
            found = segment.match(part)
            if found is None:
                return None
            values.update(found)
        return values

    def stripped(self) -> PathTemplate:
        """Same template without its leading slash."""
        if not self.leading_slash:
            return self
        return PathTemplate(self.raw[1:], self.segments, False)

    def expand(self, values: Mapping[str, Any]) -> str:
        """Substitute placeholders with URL-quoted values.

        Raises:
            ParameterError: A placeholder has no value.
        """
        missing = [name for name in self.names if values.get(name) in (None, "")]
        if missing:
            raise ParameterError(
                f"Missing value for path parameter(s): {', '.join(missing)}",
                missing=missing,
            )
        return _PLACEHOLDER_RE.sub(lambda m: quote(str(values[m.group(1)]), safe=""), self.raw)


def normalize_path(raw: str) -> str:
    """Return the uniqueness key of a path template (see PathTemplate.normalized)."""
    return PathTemplate.parse(raw).normalized


@dataclass(frozen=True)
class MatchResult:
    """Successful match: the endpoint record and the extracted path values."""

    endpoint: dict[str, Any]
    params: dict[str, str]
    exact: bool


class EndpointMatcher:
    """Match inbound requests against a provider's endpoint records.

    Endpoint records are dicts with at least ``method`` and ``path``; they are
    tried in the order given, which is the registry's stored order.
    """

    def __init__(self) -> None:
        self._parsed: dict[str, PathTemplate] = {}

    def _template(self, raw: str) -> PathTemplate | None:
        template = self._parsed.get(raw)
        if template is None:
            try:
                template = PathTemplate.parse(raw)
            except ValueError as e:
                logger.warning("Skipping endpoint template %r: %s", raw, e)
                return None
            self._parsed[raw] = template
        return template

    @staticmethod
    def available(endpoints: Iterable[Mapping[str, Any]]) -> list[str]:
        """Return ``"VERB path"`` strings for diagnostics."""
        return [f"{ep['method'].upper()} {ep['path']}" for ep in endpoints]

    def find(
        self, endpoints: Sequence[Mapping[str, Any]], method: str, path: str
    ) -> MatchResult | None:
        """Return the first matching endpoint or None."""
        verb = method.upper()
        candidates = [ep for ep in endpoints if str(ep["method"]).upper() == verb]

        stripped = path[1:] if path.startswith("/") else path
        for probe, strip in ((path, False), (stripped, True)):
            for ep in candidates:
                raw = ep["path"][1:] if strip and ep["path"].startswith("/") else ep["path"]
                if raw == probe:
                    template = self._template(ep["path"])
                    params = {}
                    if template is not None:
                        params = (template.stripped() if strip else template).match(probe) or {}
                    return MatchResult(dict(ep), params, exact=True)
            for ep in candidates:
                template = self._template(ep["path"])
                if template is None:
                    continue
                if strip:
                    template = template.stripped()
                params = template.match(probe)
                if params is not None:
                    return MatchResult(dict(ep), params, exact=False)
        return None

    def match(
        self, endpoints: Sequence[Mapping[str, Any]], method: str, path: str
    ) -> MatchResult:
        """Return the matching endpoint.

        Raises:
            NotFoundError: Nothing matched. Carries ``availableEndpoints``.
        """
        result = self.find(endpoints, method, path)
        if result is None:
            logger.debug("No endpoint for %s %s", method, path)
            raise NotFoundError(
                "Endpoint not found or not supported",
                availableEndpoints=self.available(endpoints),
            )
        return result


__all__ = [
    "EndpointMatcher",
    "MatchResult",
    "PathTemplate",
    "Segment",
    "normalize_path",
]
