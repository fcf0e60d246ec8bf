"""Immutable variable environment threaded through a pipeline run."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional

from .errors import MappingError
from .mapping.engine import MISSING, lookup

TRIGGER = "trigger"


@dataclass(frozen=True)
class Scope:
    """Variables visible to a step.

    ``trigger`` is the inbound record, ``variables`` holds step outputs by
    name and ``last`` is the most recent step output (initially the
    trigger). Binding returns a new scope; nothing is mutated in place.
    """

    trigger: Mapping[str, Any]
    variables: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    last: Any = None

    @classmethod
    def start(cls, trigger: Mapping[str, Any]) -> "Scope":
        return cls(trigger=MappingProxyType(dict(trigger)), last=trigger)

    def bind(self, output: Any, *names: Optional[str]) -> "Scope":
        """Return a new scope with ``output`` stored under every name."""
        variables = dict(self.variables)
        for name in names:
            if name:
                variables[name] = output
        return Scope(
            trigger=self.trigger,
            variables=MappingProxyType(variables),
            last=output,
        )

    def resolve(self, reference: str) -> Any:
        """Resolve ``$trigger``, ``$name`` or a dotted path below either.

        Raises:
            MappingError: ``UnresolvedVariable`` if nothing is bound there.
        """
        name, _, path = reference.lstrip("$").partition(".")
        if name == TRIGGER:
            root: Any = self.trigger
        elif name in self.variables:
            root = self.variables[name]
        else:
            raise MappingError(
                MappingError.UNRESOLVED_VARIABLE,
                reference,
                f"variable '{reference}' is not bound",
            )
        if not path:
            return root
        value = lookup(root, path) if isinstance(root, Mapping) else MISSING
        if value is MISSING:
            raise MappingError(
                MappingError.UNRESOLVED_VARIABLE,
                reference,
                f"'{reference}' does not resolve to a value",
            )
        return value

    def resolve_value(self, value: Any) -> Any:
        """Resolve ``value`` if it is a ``$reference``, else return it as-is."""
        if isinstance(value, str) and value.startswith("$") and len(value) > 1:
            return self.resolve(value)
        return value

    def render_input(self, input_mapping: Optional[Mapping[str, Any]]) -> Any:
        """Build a step input from ``input_mapping`` or fall back to ``last``."""
        if not input_mapping:
            return self.last
        return {key: self.resolve_value(value) for key, value in input_mapping.items()}

    def template_context(self, step_input: Any) -> dict[str, Any]:
        """Names available to ``{{...}}`` placeholders in body templates."""
        context = dict(self.variables)
        context[TRIGGER] = self.trigger
        context["input"] = step_input
        return context
