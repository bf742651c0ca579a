"""
apps.config_core.scope
~~~~~~~~~~~~~~~~~~~~~~~
The :class:`Scope` value object, used both as the descriptor attached to a
stored value record and as the request context passed to resolution.

Pure Python: no ORM imports.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from common.exceptions import ScopeNotAllowedError

GLOBAL = "global"

#: Scope dimensions, most specific first.  Resolution walks this order and
#: finishes with the global scope.
PRECEDENCE: tuple[str, ...] = ("workflow", "agent", "persona")

#: Dimension name -> Scope attribute.
DIMENSION_ATTRS: dict[str, str] = {
    "persona": "persona",
    "agent": "agent_id",
    "workflow": "workflow_id",
}

#: Accepted spellings when building a Scope from request data.
_ALIASES: dict[str, tuple[str, ...]] = {
    "persona": ("persona",),
    "agent_id": ("agent_id", "agentId", "agent"),
    "workflow_id": ("workflow_id", "workflowId", "workflow"),
}
_KNOWN_NAMES: frozenset[str] = frozenset(name for names in _ALIASES.values() for name in names)


def _normalise(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Scope:
    """
    Zero or more scope dimension values.

    Identifiers are opaque strings; integers are accepted and stored as
    text, and blank values count as absent.  ``Scope()`` is the global
    scope.

    A stored record carries at most one dimension (see
    :attr:`is_single_dimension`); a request context may carry several, in
    which case :meth:`precedence_chain` orders the single-dimension scopes to
    try, most specific first.
    """

    persona: str | None = None
    agent_id: str | None = None
    workflow_id: str | None = None

    def __post_init__(self) -> None:
        for attr in DIMENSION_ATTRS.values():
            object.__setattr__(self, attr, _normalise(getattr(self, attr)))

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, data, *, strict: bool = False) -> Scope:
        """
        Build a Scope from a dict or query dict.

        Unknown keys are ignored, so a query string can carry other
        parameters.  With *strict* (scopes of writes) any key that is not a
        dimension name or alias raises :class:`ScopeNotAllowedError`; a
        misspelled dimension must never turn into a global write.
        """
        if strict:
            if not isinstance(data, Mapping):
                raise ScopeNotAllowedError("Scope must be an object of dimension identifiers.")
            unknown = sorted(str(name) for name in data if name not in _KNOWN_NAMES)
            if unknown:
                raise ScopeNotAllowedError(
                    f"Unknown scope field(s) {unknown}; expected {sorted(_KNOWN_NAMES)}."
                )
        if not data:
            return cls()
        kwargs = {}
        for attr, names in _ALIASES.items():
            for name in names:
                if data.get(name) not in (None, ""):
                    kwargs[attr] = data.get(name)
                    break
        return cls(**kwargs)

    @classmethod
    def for_dimension(cls, dimension: str, value: str) -> Scope:
        """Inverse of (:attr:`dimension`, :attr:`value`)."""
        if dimension == GLOBAL:
            return cls()
        return cls(**{DIMENSION_ATTRS[dimension]: value})

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def dimensions(self) -> list[tuple[str, str]]:
        """Present ``(dimension, value)`` pairs, most specific first."""
        return [
            (dimension, getattr(self, DIMENSION_ATTRS[dimension]))
            for dimension in PRECEDENCE
            if getattr(self, DIMENSION_ATTRS[dimension]) is not None
        ]

    @property
    def is_global(self) -> bool:
        return not self.dimensions

    @property
    def is_single_dimension(self) -> bool:
        return len(self.dimensions) <= 1

    @property
    def dimension(self) -> str:
        """The record dimension: ``"global"`` or the single present dimension."""
        present = self.dimensions
        if len(present) > 1:
            raise ValueError(f"{self} spans more than one scope dimension.")
        return present[0][0] if present else GLOBAL

    @property
    def value(self) -> str:
        """The record scope value; ``""`` for the global scope."""
        present = self.dimensions
        if len(present) > 1:
            raise ValueError(f"{self} spans more than one scope dimension.")
        return present[0][1] if present else ""

    def precedence_chain(self) -> list[Scope]:
        """
        Single-dimension scopes to try during resolution, in order.

        ``Scope(persona="rachel", workflow_id="7").precedence_chain()`` is
        ``[Scope(workflow_id="7"), Scope(persona="rachel"), Scope()]``.
        """
        chain = [Scope.for_dimension(dimension, value) for dimension, value in self.dimensions]
        chain.append(Scope())
        return chain

    def to_dict(self) -> dict[str, str]:
        """Present fields only, e.g. ``{"persona": "rachel"}``; ``{}`` for global."""
        return {
            attr: getattr(self, attr)
            for attr in DIMENSION_ATTRS.values()
            if getattr(self, attr) is not None
        }

    def __str__(self) -> str:
        if self.is_global:
            return GLOBAL
        return ",".join(f"{dimension}={value}" for dimension, value in self.dimensions)
