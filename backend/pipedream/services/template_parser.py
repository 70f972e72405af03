"""
Template parsing for text node variable interpolation.

Template syntax: ``{variableName}`` where the name is alphanumeric plus
underscores, e.g. ``"A {fruit} in a {color} bowl"``. When one or more bound
values is a list, every combination of list values is rendered.
"""

from __future__ import annotations

import itertools
import re
from typing import Mapping

from pydantic import BaseModel

_VARIABLE_PATTERN = re.compile(r"\{([a-zA-Z_][a-zA-Z0-9_]*)\}")


class ListInfo(BaseModel):
    names: list[str]
    counts: list[int]
    total_combinations: int


class InterpolationResult(BaseModel):
    results: list[str]
    list_info: ListInfo | None = None
    error: str | None = None


def parse_template_variables(template: str) -> list[str]:
    """Return unique variable names in order of first appearance."""
    variables: list[str] = []
    for match in _VARIABLE_PATTERN.finditer(template):
        name = match.group(1)
        if name not in variables:
            variables.append(name)
    return variables


def interpolate_template(template: str, values: Mapping[str, str]) -> str:
    """Substitute scalar values. Missing variables are left as literal ``{name}``."""

    def _replace(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in values and values[name] is not None:
            return str(values[name])
        return match.group(0)

    return _VARIABLE_PATTERN.sub(_replace, template)


def interpolate_template_with_list(
    template: str,
    values: Mapping[str, str | list[str]],
) -> InterpolationResult:
    """
    Render a template once per combination of its list-valued bindings.

    Bindings are partitioned into scalars and lists. Any empty list is a hard
    error. Without lists a single result is produced. With lists the result
    count is the product of the list lengths, ordered with the first list
    binding as the outermost loop.
    """
    list_entries = [(name, v) for name, v in values.items() if isinstance(v, list)]
    scalar_values = {name: v for name, v in values.items() if not isinstance(v, list)}

    empty = [name for name, v in list_entries if len(v) == 0]
    if empty:
        return InterpolationResult(results=[], error=f"Empty list(s): {', '.join(empty)}")

    if not list_entries:
        return InterpolationResult(results=[interpolate_template(template, scalar_values)])

    names = [name for name, _ in list_entries]
    counts = [len(v) for _, v in list_entries]

    results: list[str] = []
    for combo in itertools.product(*(v for _, v in list_entries)):
        combo_values = dict(scalar_values)
        combo_values.update(zip(names, combo))
        results.append(interpolate_template(template, combo_values))

    total = 1
    for count in counts:
        total *= count

    return InterpolationResult(
        results=results,
        list_info=ListInfo(names=names, counts=counts, total_combinations=total),
    )
