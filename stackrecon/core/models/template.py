"""
Template model — the synthesized (or last deployed) shape of a stack.

A Template mirrors the two CloudFormation sections the engine cares about:
``Resources`` (logical id → definition) and ``Outputs`` (key → value
expression plus an optional export name). Everything else in a provider
template is carried through untouched in ``extra``.

Desired templates are treated as immutable once synthesized; the
reconciler always works on a deep copy.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterator

from pydantic import BaseModel, Field

IMPORT_VALUE = "Fn::ImportValue"

_SUB_VAR_RE = re.compile(r"\$\{([A-Za-z0-9]+)(?:\.[A-Za-z0-9.]+)?\}")


class Resource(BaseModel):
    """A single logical resource definition."""

    type: str
    properties: dict[str, Any] = Field(default_factory=dict)
    depends_on: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_cfn(self) -> dict[str, Any]:
        data: dict[str, Any] = {"Type": self.type}
        if self.properties:
            data["Properties"] = self.properties
        if self.depends_on:
            data["DependsOn"] = list(self.depends_on)
        if self.metadata:
            data["Metadata"] = self.metadata
        return data

    @classmethod
    def from_cfn(cls, data: dict[str, Any]) -> Resource:
        depends_on = data.get("DependsOn", [])
        if isinstance(depends_on, str):
            depends_on = [depends_on]
        return cls(
            type=data.get("Type", ""),
            properties=data.get("Properties", {}) or {},
            depends_on=depends_on,
            metadata=data.get("Metadata", {}) or {},
        )


class Output(BaseModel):
    """A stack output.

    Attributes:
        value:          Value expression (literal, Ref, Fn::GetAtt, ...).
        export_name:    Name the value is exported under, if any.
        description:    Free text shown by the provider.
        resolved_value: The concrete value the provider reported for this
                        output. Only set on last-deployed templates.
    """

    value: Any
    export_name: str | None = None
    description: str = ""
    resolved_value: str | None = None

    @property
    def exported(self) -> bool:
        return bool(self.export_name)

    def to_cfn(self) -> dict[str, Any]:
        data: dict[str, Any] = {"Value": self.value}
        if self.description:
            data["Description"] = self.description
        if self.export_name:
            data["Export"] = {"Name": self.export_name}
        return data

    @classmethod
    def from_cfn(cls, data: dict[str, Any], resolved_value: str | None = None) -> Output:
        export = data.get("Export") or {}
        name = export.get("Name") if isinstance(export, dict) else None
        return cls(
            value=data.get("Value"),
            export_name=name if isinstance(name, str) else None,
            description=data.get("Description", ""),
            resolved_value=resolved_value,
        )


class Template(BaseModel):
    """Resources + outputs of one stack."""

    description: str = ""
    resources: dict[str, Resource] = Field(default_factory=dict)
    outputs: dict[str, Output] = Field(default_factory=dict)
    extra: dict[str, Any] = Field(default_factory=dict)

    # ── Lookups ──────────────────────────────────────────────────

    def exports(self) -> dict[str, tuple[str, Output]]:
        """Map export name → (output key, output) for every exported output."""
        found: dict[str, tuple[str, Output]] = {}
        for key, output in self.outputs.items():
            if output.export_name:
                found[output.export_name] = (key, output)
        return found

    def imports(self) -> set[str]:
        """Names of every export this template imports via Fn::ImportValue."""
        names: set[str] = set()
        for resource in self.resources.values():
            names.update(_find_imports(resource.properties))
        for output in self.outputs.values():
            names.update(_find_imports(output.value))
        return names

    def has_resource(self, logical_id: str) -> bool:
        return logical_id in self.resources

    # ── Serialization ────────────────────────────────────────────

    def to_cfn(self) -> dict[str, Any]:
        """Render as a CloudFormation template document."""
        data: dict[str, Any] = {"AWSTemplateFormatVersion": "2010-09-09"}
        data.update(self.extra)
        if self.description:
            data["Description"] = self.description
        data["Resources"] = {k: r.to_cfn() for k, r in self.resources.items()}
        if self.outputs:
            data["Outputs"] = {k: o.to_cfn() for k, o in self.outputs.items()}
        return data

    @classmethod
    def from_cfn(
        cls,
        data: dict[str, Any],
        resolved_outputs: dict[str, str] | None = None,
    ) -> Template:
        """Parse a CloudFormation template document.

        Args:
            data: The template body as a dict.
            resolved_outputs: Optional output key → concrete value map, as
                reported by the provider for a deployed stack.
        """
        resolved_outputs = resolved_outputs or {}
        known = {"AWSTemplateFormatVersion", "Description", "Resources", "Outputs"}
        return cls(
            description=data.get("Description", "") or "",
            resources={
                k: Resource.from_cfn(v) for k, v in (data.get("Resources") or {}).items()
            },
            outputs={
                k: Output.from_cfn(v, resolved_outputs.get(k))
                for k, v in (data.get("Outputs") or {}).items()
            },
            extra={k: v for k, v in data.items() if k not in known},
        )

    def canonical_json(self) -> str:
        """Stable JSON rendering (sorted keys) used for comparisons."""
        return json.dumps(self.to_cfn(), sort_keys=True, separators=(",", ":"), default=str)


# ── Expression helpers ───────────────────────────────────────────────


def _walk(value: Any) -> Iterator[dict[str, Any]]:
    """Yield every dict nested anywhere inside ``value``."""
    if isinstance(value, dict):
        yield value
        for v in value.values():
            yield from _walk(v)
    elif isinstance(value, list):
        for item in value:
            yield from _walk(item)


def _find_imports(value: Any) -> set[str]:
    names: set[str] = set()
    for node in _walk(value):
        name = node.get(IMPORT_VALUE)
        if isinstance(name, str):
            names.add(name)
    return names


def referenced_resources(value: Any) -> set[str]:
    """Logical ids a value expression points at.

    Understands ``Ref``, ``Fn::GetAtt`` (list or dotted form) and
    ``Fn::Sub`` placeholders. Pseudo parameters (``AWS::Region``...) are
    not resources and are ignored.
    """
    ids: set[str] = set()
    for node in _walk(value):
        ref = node.get("Ref")
        if isinstance(ref, str) and not ref.startswith("AWS::"):
            ids.add(ref)

        get_att = node.get("Fn::GetAtt")
        if isinstance(get_att, list) and get_att and isinstance(get_att[0], str):
            ids.add(get_att[0])
        elif isinstance(get_att, str):
            ids.add(get_att.split(".", 1)[0])

        sub = node.get("Fn::Sub")
        if isinstance(sub, list) and sub and isinstance(sub[0], str):
            local_vars = sub[1] if len(sub) > 1 and isinstance(sub[1], dict) else {}
            ids.update(v for v in _SUB_VAR_RE.findall(sub[0]) if v not in local_vars)
        elif isinstance(sub, str):
            ids.update(_SUB_VAR_RE.findall(sub))
    return ids
