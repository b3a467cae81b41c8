"""Matrix expansion: a pre-processing pass over job templates.

Every job with a matrix strategy is replaced by one concrete job per
combination. Each expansion is an independent graph node sharing the
template's dependency edges, so the scheduler needs no matrix-specific
branching beyond fail-fast and per-matrix parallelism.
"""

from __future__ import annotations

import itertools
from typing import Any

from hexci.kernel.domain.pipeline import JobSpec, MatrixStrategy
from hexci.kernel.exceptions import ValidationError
from hexci.kernel.expressions import render
from hexci.kernel.logging import get_logger

logger = get_logger(__name__)


def matrix_combinations(strategy: MatrixStrategy) -> list[dict[str, Any]]:
    """Compute the combinations of a matrix strategy.

    Cross product of ``dimensions``, minus every combination matching an
    ``exclude`` entry, then ``include`` entries are merged into the
    combinations they match or appended as extra combinations.

    Examples
    --------
    >>> strategy = MatrixStrategy(dimensions={"os": ["linux", "mac"], "py": ["3.11", "3.12"]},
    ...                           exclude=[{"os": "mac", "py": "3.11"}])
    >>> matrix_combinations(strategy)
    [{'os': 'linux', 'py': '3.11'}, {'os': 'linux', 'py': '3.12'}, {'os': 'mac', 'py': '3.12'}]
    """
    keys = list(strategy.dimensions)
    if keys:
        combos = [
            dict(zip(keys, values, strict=True))
            for values in itertools.product(*(strategy.dimensions[k] for k in keys))
        ]
    else:
        combos = []

    def matches(combo: dict[str, Any], pattern: dict[str, Any]) -> bool:
        return all(combo.get(k) == v for k, v in pattern.items())

    combos = [c for c in combos if not any(matches(c, ex) for ex in strategy.exclude)]

    # include entries extend base combinations without overwriting matrix values
    base = list(combos)
    for extra in strategy.include:
        original = {k: v for k, v in extra.items() if k in keys}
        targets = [c for c in base if matches(c, original)]
        if targets:
            for combo in targets:
                combo.update({k: v for k, v in extra.items() if k not in keys})
        else:
            combos.append(dict(extra))

    return combos


def expansion_name(template: str, combo: dict[str, Any]) -> str:
    """Name of a concrete matrix job, e.g. ``build (linux, 3.12)``."""
    return f"{template} ({', '.join(str(v) for v in combo.values())})"


def expand_matrix(jobs: list[JobSpec]) -> list[JobSpec]:
    """Expand matrix jobs into concrete jobs and rewrite ``needs`` edges.

    A dependency on a matrix template becomes a dependency on every one of
    its expansions.

    Raises
    ------
    ValidationError
        If a matrix expands to no combinations.
    """
    expanded: dict[str, list[JobSpec]] = {}
    for job in jobs:
        if job.strategy is None:
            expanded[job.name] = [job]
            continue

        combos = matrix_combinations(job.strategy)
        if not combos:
            raise ValidationError(f"jobs.{job.name}.strategy", "matrix expands to no jobs")

        instances = []
        for combo in combos:
            context = {"matrix": combo}
            instances.append(
                job.model_copy(
                    update={
                        "name": expansion_name(job.name, combo),
                        "matrix_values": combo,
                        "template": job.name,
                        "concurrency_group": _render_optional(job.concurrency_group, context),
                        "environment": _render_optional(job.environment, context),
                        "runs_on": _render_optional(job.runs_on, context),
                    }
                )
            )
        logger.debug("Expanded matrix job '{}' into {} job(s)", job.name, len(instances))
        expanded[job.name] = instances

    result: list[JobSpec] = []
    for instances in expanded.values():
        for instance in instances:
            needs: list[str] = []
            for need in instance.needs:
                targets = expanded.get(need)
                if targets:
                    needs.extend(t.name for t in targets)
                else:
                    needs.append(need)
            result.append(instance.model_copy(update={"needs": needs}))
    return result


def _render_optional(value: str | None, context: dict[str, Any]) -> str | None:
    return render(value, context, partial=True) if value is not None else None
