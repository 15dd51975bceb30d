"""Built-in transform node functions.

A transform receives the outputs of its upstream nodes as ``(slot, text)``
pairs in edge insertion order and returns the node's output text.
"""

from collections.abc import Callable
from typing import Any

TransformInput = list[tuple[str | None, str]]
TransformFn = Callable[[TransformInput, dict[str, Any]], str]

DEFAULT_SEPARATOR = "\n\n"


class TransformError(Exception):
    """A transform could not produce an output."""


def join(inputs: TransformInput, params: dict[str, Any]) -> str:
    """Concatenate all inputs, separated by a blank line by default."""
    separator = params.get("separator", DEFAULT_SEPARATOR)
    return separator.join(text for _, text in inputs)


def template(inputs: TransformInput, params: dict[str, Any]) -> str:
    """
    Fill ``params["template"]`` with the inputs.

    Named slots become ``{slot}`` placeholders. Unnamed inputs are joined
    into ``{input}``.
    """
    pattern = params.get("template")
    if not isinstance(pattern, str):
        raise TransformError("template transform requires a 'template' string param")

    values: dict[str, str] = {}
    unnamed: list[str] = []
    for slot, text in inputs:
        if slot is None:
            unnamed.append(text)
        elif slot in values:
            values[slot] = DEFAULT_SEPARATOR.join([values[slot], text])
        else:
            values[slot] = text
    values.setdefault("input", DEFAULT_SEPARATOR.join(unnamed))

    try:
        return pattern.format(**values)
    except (KeyError, IndexError, ValueError) as e:
        raise TransformError(f"template formatting failed: {e!r}") from e


TRANSFORMS: dict[str, TransformFn] = {
    "join": join,
    "template": template,
}


def apply_transform(name: str | None, inputs: TransformInput, params: dict[str, Any]) -> str:
    """Run the transform called ``name`` (``join`` when unset)."""
    fn = TRANSFORMS.get(name or "join")
    if fn is None:
        raise TransformError(f"Unknown transform '{name}'")
    return fn(inputs, params)
