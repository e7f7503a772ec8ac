"""
pxcore/errors.py
================
Error kinds raised by the PX model, the classification store and the
cross-table validator.

Every error derives from ``PxError`` which is itself a ``ValueError``, so
callers that only catch ``ValueError`` keep working.
"""
from __future__ import annotations

from typing import Iterable


class PxError(ValueError):
    """Base class for every pxcore error."""


# ---------------------------------------------------------------------------
# Classifications
# ---------------------------------------------------------------------------

class DuplicateCodeError(PxError):
    """A classification lists the same valuecode more than once."""

    def __init__(self, name: str, codes: Iterable[str]):
        self.name = name
        self.codes = list(codes)
        super().__init__(
            f"Classification '{name}' has duplicated valuecodes: {', '.join(self.codes)}"
        )


class IncompleteAggregationError(PxError):
    """Some valuecodes have no group under an aggregation column."""

    def __init__(self, name: str, missing: dict[str, list[str]]):
        self.name = name
        self.missing = missing
        detail = "; ".join(f"{agg}: {', '.join(codes)}" for agg, codes in missing.items())
        super().__init__(f"Classification '{name}' has codes without a group ({detail})")


class UnknownDomainError(PxError):
    """Binding to a domain the given store does not know."""

    def __init__(self, domain: str):
        self.domain = domain
        super().__init__(f"No classification with domain '{domain}'")


class UnresolvedDomainError(PxError):
    """A bound domain could not be resolved when it was needed."""

    def __init__(self, domain: str, variable: str | None = None):
        self.domain = domain
        self.variable = variable
        where = f" (variable '{variable}')" if variable else ""
        super().__init__(f"Domain '{domain}' cannot be resolved{where}")


class InvalidBindingError(PxError):
    """The classification has valuecodes the bound variable does not carry."""

    def __init__(self, variable: str, domain: str, codes: Iterable[str]):
        self.variable = variable
        self.domain = domain
        self.codes = list(codes)
        super().__init__(
            f"Variable '{variable}' lacks valuecodes of domain '{domain}': {', '.join(self.codes)}"
        )


# ---------------------------------------------------------------------------
# Languages / PX headers
# ---------------------------------------------------------------------------

class UnknownLanguageError(PxError):
    def __init__(self, languages: Iterable[str], active: Iterable[str]):
        self.languages = sorted(languages)
        self.active = list(active)
        super().__init__(
            f"Languages {self.languages} are not active (active: {self.active})"
        )


class InvalidLanguageTransitionError(PxError):
    """Requested language set is empty, misses the primary or drops a language."""


class MalformedHeaderError(PxError):
    """A PX header lacks a mandatory keyword or holds an unreadable record."""


class LanguageMismatchError(PxError):
    def __init__(self, keyword: str, language: str):
        self.keyword = keyword
        self.language = language
        super().__init__(
            f"Keyword {keyword} uses language '{language}' not declared in LANGUAGES"
        )


# ---------------------------------------------------------------------------
# Validation outcomes
# ---------------------------------------------------------------------------

class ValidationFailure(PxError):
    """A cross-table comparison failed. Carries the full result."""

    def __init__(self, message: str, result):
        self.result = result
        super().__init__(message)


class NonFiniteComparisonError(ValidationFailure):
    """Rows whose percent change is undefined (zero or missing reference)."""


class ThresholdExceededError(ValidationFailure):
    """Rows whose absolute percent change exceeds the threshold."""
