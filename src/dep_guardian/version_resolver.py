"""Pure version parsing, comparison and update classification.

Purpose
-------
Parse the version strings found in manifests and registry documents,
compare them, and classify the step between an installed version and a
candidate version. Nothing in this module performs I/O or raises on bad
input: unparsable strings yield ``None`` or :attr:`UpdateClass.UNKNOWN`.

Contents
--------
* :func:`parse` - Parse a version string (semver first, then fallbacks)
* :func:`classify` - Classify the delta between two versions
* :func:`clean` - Base version of a declared range
* :func:`satisfies_range` / :func:`max_satisfying` - npm range helpers
* :class:`ParsedVersion` - Parsed, orderable version

System Role
-----------
Used by the analyzer to fill ``update_class`` and ``wanted_version`` and by
the graph analyzer to order duplicate versions.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import TYPE_CHECKING

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import InvalidVersion, Version

from .models import UpdateClass

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)

# Precompiled regex patterns for version parsing
_RE_RANGE_PREFIX = re.compile(r"^(?:\^|~>|~|>=|<=|>|<|=)\s*")
_RE_SEMVER = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)
_RE_DATE_COMPACT = re.compile(r"^(\d{8}|\d{14})$")
_RE_DATE_DOTTED = re.compile(r"^(\d{4})[.-](\d{2})[.-](\d{2})$")
_RE_INTEGER = re.compile(r"^(\d+)$")
_RE_PARTIAL = re.compile(r"^(\d+)\.(\d+)$")
_RE_FOUR_PART = re.compile(r"^(\d+)\.(\d+)\.(\d+)\.(\d+)$")
_RE_TAG = re.compile(r"^(latest|stable|current)$", re.IGNORECASE)

# Precompiled regex patterns for npm range translation
_RE_PARTIAL_RANGE = re.compile(
    r"^[vV]?(\d+|[xX*])(?:\.(\d+|[xX*]))?(?:\.(\d+|[xX*]))?"
    r"(?:-([0-9A-Za-z.-]+))?(?:\+[0-9A-Za-z.-]+)?$"
)
_RE_OPERATOR = re.compile(r"^(\^|~>|~|>=|<=|>|<|=)?(.*)$")
_RE_OPERATOR_GAP = re.compile(r"(\^|~>|~|>=|<=|>|<|=)\s+")
_RE_HYPHEN = re.compile(r"^(\S+)\s+-\s+(\S+)$")

TAG_TOKENS = frozenset({"latest", "stable", "current"})


@dataclass(frozen=True, slots=True)
class ParsedVersion:
    """A parsed version.

    Attributes:
        major: Major component (or the full stamp for compact dates).
        minor: Minor component.
        patch: Patch component.
        prerelease: Pre-release identifiers, numeric ones as ints.
        build: Build metadata identifiers (ignored for ordering).
        kind: Shape that matched: ``semver``, ``partial``, ``integer``,
            ``four-part``, ``date`` or ``tag``.
        raw: The original string.
        extra: Components beyond patch (four-part versions).
    """

    major: int
    minor: int
    patch: int
    prerelease: tuple[int | str, ...] = ()
    build: tuple[str, ...] = ()
    kind: str = "semver"
    raw: str = ""
    extra: tuple[int, ...] = ()

    @property
    def is_comparable(self) -> bool:
        """Tags such as ``latest`` name a version without being one."""
        return self.kind != "tag"

    @property
    def is_prerelease(self) -> bool:
        return bool(self.prerelease)

    @property
    def sort_key(self) -> tuple[object, ...]:
        """Semver precedence key; build metadata does not participate."""
        if not self.prerelease:
            pre_key: tuple[object, ...] = (1,)
        else:
            idents = tuple((0, p, "") if isinstance(p, int) else (1, 0, p) for p in self.prerelease)
            pre_key = (0, idents)
        return (self.major, self.minor, self.patch, self.extra, pre_key)

    def __str__(self) -> str:
        if self.kind == "tag":
            return self.raw
        if self.kind == "date" and not self.minor and not self.patch:
            return str(self.major)
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.extra:
            text += "".join(f".{part}" for part in self.extra)
        if self.prerelease:
            text += "-" + ".".join(str(p) for p in self.prerelease)
        return text


def _prerelease_identifiers(text: str | None) -> tuple[int | str, ...]:
    if not text:
        return ()
    return tuple(int(p) if p.isdigit() else p for p in text.split("."))


def _strip_range_prefix(text: str) -> str:
    """Remove one leading range operator and a ``v`` prefix."""
    text = _RE_RANGE_PREFIX.sub("", text.strip(), count=1)
    if text[:1] in ("v", "V") and text[1:2].isdigit():
        text = text[1:]
    return text.strip()


@lru_cache(maxsize=2048)
def parse(version: str | None) -> ParsedVersion | None:
    """Parse a version string.

    Leading range operators (``^``, ``~``, ``>=``, ...) are stripped, then
    strict semantic versioning is tried, then the recognized non-semver
    shapes: bare integers, ``MAJOR.MINOR``, four-part versions, date stamps
    and the tokens ``latest``/``stable``/``current``.

    Args:
        version: Version string, possibly None or empty.

    Returns:
        The parsed version, or None when no shape matches.

    Example:
        >>> str(parse("^1.2.3-beta.1"))
        '1.2.3-beta.1'
        >>> parse("not a version") is None
        True
    """
    if not version or not isinstance(version, str):
        return None
    raw = version
    text = _strip_range_prefix(version)
    if not text:
        return None

    match = _RE_SEMVER.match(text)
    if match:
        return ParsedVersion(
            major=int(match.group(1)),
            minor=int(match.group(2)),
            patch=int(match.group(3)),
            prerelease=_prerelease_identifiers(match.group(4)),
            build=tuple(match.group(5).split(".")) if match.group(5) else (),
            kind="semver",
            raw=raw,
        )
    return _parse_fallback(text, raw)


def _parse_fallback(text: str, raw: str) -> ParsedVersion | None:
    """Match the non-semver shapes seen in the wild."""
    if match := _RE_DATE_COMPACT.match(text):
        return ParsedVersion(int(match.group(1)), 0, 0, kind="date", raw=raw)
    if match := _RE_DATE_DOTTED.match(text):
        year, month, day = (int(g) for g in match.groups())
        return ParsedVersion(year, month, day, kind="date", raw=raw)
    if match := _RE_INTEGER.match(text):
        return ParsedVersion(int(match.group(1)), 0, 0, kind="integer", raw=raw)
    if match := _RE_PARTIAL.match(text):
        return ParsedVersion(int(match.group(1)), int(match.group(2)), 0, kind="partial", raw=raw)
    if match := _RE_FOUR_PART.match(text):
        major, minor, patch, fourth = (int(g) for g in match.groups())
        return ParsedVersion(major, minor, patch, extra=(fourth,), kind="four-part", raw=raw)
    if _RE_TAG.match(text):
        return ParsedVersion(0, 0, 0, kind="tag", raw=raw)
    return None


def _comparable(version: str | None) -> ParsedVersion | None:
    parsed = parse(version)
    if parsed is None or not parsed.is_comparable:
        return None
    return parsed


def compare(left: str | None, right: str | None) -> int | None:
    """Compare two versions.

    Returns:
        -1, 0 or 1, or None when either side cannot be compared.
    """
    a, b = _comparable(left), _comparable(right)
    if a is None or b is None:
        return None
    if a.sort_key == b.sort_key:
        return 0
    return -1 if a.sort_key < b.sort_key else 1


def classify(current: str | None, latest: str | None) -> UpdateClass:
    """Classify the update from ``current`` to ``latest``.

    The most significant differing component wins; a difference only in
    pre-release identifiers (or a fourth component) counts as a patch. A
    latest version lower than the current one cannot be classified.

    Example:
        >>> classify("1.0.0", "2.0.0").value
        'major'
        >>> classify("1.4.2", "1.4.2").value
        'current'
        >>> classify("", "1.0.0").value
        'unknown'
    """
    cur, lat = _comparable(current), _comparable(latest)
    if cur is None or lat is None:
        return UpdateClass.UNKNOWN
    if cur.sort_key == lat.sort_key:
        return UpdateClass.CURRENT
    if lat.sort_key < cur.sort_key:
        return UpdateClass.UNKNOWN
    if lat.major != cur.major:
        return UpdateClass.MAJOR
    if lat.minor != cur.minor:
        return UpdateClass.MINOR
    return UpdateClass.PATCH


def ordering_key(version: str) -> tuple[object, ...]:
    """Sort key placing comparable versions first, the rest lexically."""
    parsed = _comparable(version)
    if parsed is None:
        return (1, version)
    return (0, parsed.sort_key)


def sort_versions(versions: Iterable[str], *, reverse: bool = False) -> list[str]:
    """Sort comparable versions by precedence, dropping the rest."""
    valid = [v for v in versions if _comparable(v) is not None]
    return sorted(valid, key=ordering_key, reverse=reverse)


def clean(declared: str | None) -> str | None:
    """Return the base version a declared range starts from.

    ``^1.2.0`` → ``1.2.0``, ``>=2.1 <3`` → ``2.1.0``, ``1.x`` → ``1.0.0``.
    Wildcards and tags have no base version.
    """
    if not declared or not isinstance(declared, str):
        return None
    first = declared.split("||", 1)[0]
    first = _RE_OPERATOR_GAP.sub(r"\1", first.strip())
    tokens = first.replace(",", " ").split()
    if not tokens:
        return None
    token = _strip_range_prefix(tokens[0])
    partial = _RE_PARTIAL_RANGE.match(token)
    if partial and partial.group(1) not in ("x", "X", "*"):
        major, minor, patch, pre = partial.groups()
        parts = [major, _numeric_or_zero(minor), _numeric_or_zero(patch)]
        token = ".".join(parts) + (f"-{pre}" if pre and patch and patch.isdigit() else "")
    parsed = _comparable(token)
    return str(parsed) if parsed is not None else None


def _numeric_or_zero(part: str | None) -> str:
    return part if part is not None and part.isdigit() else "0"


# ════════════════════════════════════════════════════════════════════════════
# npm range support
# ════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class _Partial:
    """A possibly incomplete version inside a range (``1``, ``1.2.x``)."""

    major: int | None
    minor: int | None
    patch: int | None
    prerelease: str | None = None

    @property
    def text(self) -> str:
        base = f"{self.major or 0}.{self.minor or 0}.{self.patch or 0}"
        return f"{base}-{self.prerelease}" if self.prerelease and self.patch is not None else base


def _parse_partial(text: str) -> _Partial | None:
    match = _RE_PARTIAL_RANGE.match(text)
    if not match:
        return None

    def number(part: str | None) -> int | None:
        return int(part) if part is not None and part.isdigit() else None

    major, minor, patch = number(match.group(1)), number(match.group(2)), number(match.group(3))
    # x-ranges: anything after a wildcard is a wildcard too
    if major is None:
        minor = patch = None
    elif minor is None:
        patch = None
    return _Partial(major, minor, patch, match.group(4))


def _upper_bound(partial: _Partial) -> str | None:
    """Exclusive upper bound of the x-range a partial version denotes."""
    if partial.major is None:
        return None
    if partial.minor is None:
        return f"{partial.major + 1}.0.0"
    if partial.patch is None:
        return f"{partial.major}.{partial.minor + 1}.0"
    return None


def _caret(partial: _Partial) -> list[str]:
    if partial.major is None:
        return []
    low = f">={partial.text}"
    if partial.major > 0 or partial.minor is None:
        return [low, f"<{partial.major + 1}.0.0"]
    if partial.minor > 0 or partial.patch is None:
        return [low, f"<0.{partial.minor + 1}.0"]
    return [low, f"<0.0.{partial.patch + 1}"]


def _tilde(partial: _Partial) -> list[str]:
    if partial.major is None:
        return []
    if partial.minor is None:
        return [f">={partial.text}", f"<{partial.major + 1}.0.0"]
    return [f">={partial.text}", f"<{partial.major}.{partial.minor + 1}.0"]


def _comparator(operator: str, partial: _Partial) -> list[str]:
    """Translate one npm comparator to PEP 440 specifiers."""
    upper = _upper_bound(partial)
    if operator == "^":
        return _caret(partial)
    if operator in ("~", "~>"):
        return _tilde(partial)
    if partial.major is None:
        return [] if operator in ("", "=", ">=", "<=") else ["<0.0.0"]
    if operator in ("", "="):
        return [f">={partial.text}", f"<{upper}"] if upper else [f"=={partial.text}"]
    if operator == ">=":
        return [f">={partial.text}"]
    if operator == "<":
        return [f"<{partial.text}"]
    if operator == ">":
        return [f">={upper}"] if upper else [f">{partial.text}"]
    if operator == "<=":
        return [f"<{upper}"] if upper else [f"<={partial.text}"]
    raise ValueError(f"Unsupported operator: {operator}")


def _hyphen(low: _Partial, high: _Partial) -> list[str]:
    specs = [f">={low.text}"] if low.major is not None else []
    if high.major is None:
        return specs
    upper = _upper_bound(high)
    return specs + ([f"<{upper}"] if upper else [f"<={high.text}"])


def _comparator_set(text: str) -> SpecifierSet:
    """Translate a whitespace-separated comparator set."""
    text = text.strip()
    hyphen = _RE_HYPHEN.match(text)
    if hyphen:
        low, high = _parse_partial(hyphen.group(1)), _parse_partial(hyphen.group(2))
        if low is None or high is None:
            raise ValueError(f"Invalid hyphen range: {text}")
        return SpecifierSet(",".join(_hyphen(low, high)))

    specs: list[str] = []
    for token in _RE_OPERATOR_GAP.sub(r"\1", text).replace(",", " ").split():
        match = _RE_OPERATOR.match(token)
        operator, rest = (match.group(1) or "", match.group(2)) if match else ("", token)
        partial = _parse_partial(rest)
        if partial is None:
            raise ValueError(f"Invalid comparator: {token}")
        specs.extend(_comparator(operator, partial))
    return SpecifierSet(",".join(specs))


@lru_cache(maxsize=1024)
def _translate_range(declared: str) -> tuple[SpecifierSet, ...] | None:
    """Translate an npm range into alternative PEP 440 specifier sets."""
    try:
        return tuple(_comparator_set(part) for part in declared.split("||"))
    except (ValueError, InvalidSpecifier) as exc:
        logger.debug("Cannot interpret range %r: %s", declared, exc)
        return None


def _as_pep440(version: str) -> Version | None:
    parsed = _comparable(version)
    if parsed is None:
        return None
    try:
        return Version(str(parsed))
    except InvalidVersion:
        return None


def _matches(candidate: Version, alternatives: tuple[SpecifierSet, ...]) -> bool:
    return any(spec.contains(candidate) for spec in alternatives)


def satisfies_range(version: str | None, declared: str | None) -> bool:
    """Return True when ``version`` satisfies the npm range ``declared``.

    Malformed versions or ranges never raise; they do not satisfy.

    Example:
        >>> satisfies_range("1.4.0", "^1.2.0")
        True
        >>> satisfies_range("2.0.0", "~1.2.0")
        False
    """
    if version is None or declared is None:
        return False
    alternatives = _translate_range(declared)
    candidate = _as_pep440(version)
    if alternatives is None or candidate is None:
        return False
    return _matches(candidate, alternatives)


def max_satisfying(versions: Iterable[str], declared: str | None) -> str | None:
    """Return the highest version satisfying ``declared``, or None."""
    if declared is None:
        return None
    alternatives = _translate_range(declared)
    if alternatives is None:
        return None
    best: str | None = None
    best_key: tuple[object, ...] | None = None
    for version in versions:
        candidate = _as_pep440(version)
        if candidate is None or not _matches(candidate, alternatives):
            continue
        key = ordering_key(version)
        if best_key is None or key > best_key:
            best, best_key = version, key
    return best


__all__ = [
    "ParsedVersion",
    "TAG_TOKENS",
    "classify",
    "clean",
    "compare",
    "max_satisfying",
    "ordering_key",
    "parse",
    "satisfies_range",
    "sort_versions",
]
