"""``${{ ... }}`` reference substitution for step commands, env and inputs.

Supported roots::

    ${{ env.NAME }}                  job-scoped environment
    ${{ matrix.os }}                 matrix values of the current expansion
    ${{ steps.<id>.outputs.<key> }}  outputs of earlier steps in the job
    ${{ needs.<job>.outputs.<key> }} declared outputs of dependency jobs
    ${{ needs.<job>.result }}        terminal status of a dependency job
    ${{ secrets.NAME }}              already-resolved secret values
    ${{ run.id }}                    the pipeline run ID

Only dotted references are supported; there is no expression language.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from hexci.kernel.exceptions import ExpressionError

EXPRESSION_PATTERN = re.compile(r"\$\{\{\s*([^}]+?)\s*\}\}")
_REFERENCE_PATTERN = re.compile(r"^[A-Za-z_][\w-]*(\.[\w-]+)*$")


def lookup(reference: str, context: Mapping[str, Any]) -> Any:
    """Resolve a dotted *reference* against *context*.

    Raises
    ------
    ExpressionError
        If the reference is malformed or a segment is missing.

    Examples
    --------
    >>> lookup("steps.build.outputs.sha", {"steps": {"build": {"outputs": {"sha": "abc"}}}})
    'abc'
    """
    if not _REFERENCE_PATTERN.match(reference):
        raise ExpressionError(reference, "only dotted references are supported")

    current: Any = context
    for segment in reference.split("."):
        if not isinstance(current, Mapping) or segment not in current:
            raise ExpressionError(reference, f"'{segment}' is not defined")
        current = current[segment]
    return current


def render(
    template: str,
    context: Mapping[str, Any],
    *,
    strict: bool = False,
    partial: bool = False,
) -> str:
    """Substitute every ``${{ ref }}`` in *template*.

    Parameters
    ----------
    template : str
        Text containing references
    context : Mapping[str, Any]
        Nested lookup context (see module docstring for the roots)
    strict : bool, default=False
        Raise ExpressionError for undefined references instead of
        substituting an empty string
    partial : bool, default=False
        Leave references whose root is absent from *context* untouched.
        Used by matrix expansion, which only knows ``matrix``.

    Examples
    --------
    >>> render("deploy-${{ matrix.env }}", {"matrix": {"env": "prod"}})
    'deploy-prod'
    >>> render("${{ steps.x.outputs.y }}", {"matrix": {}}, partial=True)
    '${{ steps.x.outputs.y }}'
    """

    def replace(match: re.Match[str]) -> str:
        reference = match.group(1)
        root = reference.split(".", 1)[0]
        if partial and root not in context:
            return match.group(0)
        try:
            value = lookup(reference, context)
        except ExpressionError:
            if strict:
                raise
            return ""
        if isinstance(value, bool):
            return str(value).lower()
        return "" if value is None else str(value)

    return EXPRESSION_PATTERN.sub(replace, template)


def render_value(
    value: Any, context: Mapping[str, Any], *, strict: bool = False, partial: bool = False
) -> Any:
    """Recursively render strings inside lists and dicts."""
    if isinstance(value, str):
        return render(value, context, strict=strict, partial=partial)
    if isinstance(value, dict):
        return {
            k: render_value(v, context, strict=strict, partial=partial) for k, v in value.items()
        }
    if isinstance(value, list):
        return [render_value(v, context, strict=strict, partial=partial) for v in value]
    return value
