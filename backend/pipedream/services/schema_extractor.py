"""
Workflow schema: the externally-callable contract of a graph.

Input nodes become run parameters, Output nodes become named result keys.
Entries without a name are "not configured yet" and are left out.
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from pipedream.models.graph import (
    InputNode,
    InputNodeInputType,
    Node,
    OutputNode,
    OutputNodeOutputType,
    parse_node,
)


class WorkflowInputSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: InputNodeInputType
    required: bool = False
    default_value: str | None = Field(None, alias="defaultValue")
    description: str | None = None


class WorkflowOutputSchema(BaseModel):
    name: str
    type: OutputNodeOutputType


class WorkflowSchema(BaseModel):
    inputs: list[WorkflowInputSchema] = Field(default_factory=list)
    outputs: list[WorkflowOutputSchema] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """camelCase JSON with optional fields omitted."""
        return self.model_dump(by_alias=True, exclude_none=True)


def extract_workflow_schema(nodes: list[Node] | list[dict[str, Any]]) -> WorkflowSchema:
    parsed = [n if isinstance(n, BaseModel) else parse_node(n) for n in nodes]

    inputs = [
        WorkflowInputSchema(
            name=n.data.name,
            type=n.data.input_type,
            required=n.data.required,
            default_value=n.data.default_value or None,
            description=n.data.description or None,
        )
        for n in parsed
        if isinstance(n, InputNode) and n.data.name
    ]
    outputs = [
        WorkflowOutputSchema(name=n.data.name, type=n.data.output_type)
        for n in parsed
        if isinstance(n, OutputNode) and n.data.name
    ]
    return WorkflowSchema(inputs=inputs, outputs=outputs)


def validate_workflow_inputs(schema: WorkflowSchema, inputs: Mapping[str, Any]) -> list[str]:
    """Return one message per required input that is absent or blank; empty when valid."""
    errors: list[str] = []
    for input_schema in schema.inputs:
        if not input_schema.required:
            continue
        value = inputs.get(input_schema.name)
        if value is None or value == "":
            errors.append(f'Required input "{input_schema.name}" is missing')
    return errors
