"""Dependency validation and stage scheduling for orchestration plans."""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List

from agentTeam.models.plan import ExecutionStage, OrchestrationPlan, WorkChunk
from agentTeam.utils.errors import PlanValidationError, SchedulingInvariantError

LOGGER = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass
class DependencyValidationResult:
    is_valid: bool
    errors: List[str] = field(default_factory=list)


class DependencyScheduler:
    """Validates a plan's dependency graph and layers it into execution stages."""

    def validate_dependencies(self, plan: OrchestrationPlan) -> DependencyValidationResult:
        """Check duplicates, dangling refs, self-deps, cycles and emptiness.

        Every check runs, so one plan can report several error classes.
        Cycle detection only follows edges between distinct, known chunks.
        The plan is never mutated.
        """
        errors: List[str] = []

        if not plan.chunks:
            errors.append("Plan contains no chunks.")
            return DependencyValidationResult(is_valid=False, errors=errors)

        id_counts = Counter(c.chunk_id for c in plan.chunks)
        for chunk_id, count in id_counts.items():
            if count > 1:
                errors.append(f"Duplicate chunk ID '{chunk_id}' appears {count} times.")

        known_ids = set(id_counts)
        for chunk in plan.chunks:
            for dep in chunk.depends_on_chunk_ids:
                if dep == chunk.chunk_id:
                    errors.append(f"Chunk '{chunk.chunk_id}' depends on itself.")
                elif dep not in known_ids:
                    errors.append(f"Chunk '{chunk.chunk_id}' depends on unknown chunk '{dep}'.")

        for cycle in self._find_cycles(plan.chunks, known_ids):
            errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

        if errors:
            LOGGER.warning(f"Plan {plan.plan_id} failed dependency validation: {'; '.join(errors)}")
        return DependencyValidationResult(is_valid=not errors, errors=errors)

    def build_schedule(self, plan: OrchestrationPlan) -> List[ExecutionStage]:
        """Layer the plan into stages with Kahn's algorithm.

        The whole ready set drains into one stage each round, sorted by
        ``sequence_index``. Raises PlanValidationError for an invalid plan.
        """
        if not plan.chunks:
            return []

        validation = self.validate_dependencies(plan)
        if not validation.is_valid:
            raise PlanValidationError(validation.errors)

        by_id: Dict[str, WorkChunk] = {c.chunk_id: c for c in plan.chunks}
        in_degree: Dict[str, int] = {c.chunk_id: len(c.depends_on_chunk_ids) for c in plan.chunks}
        dependents: Dict[str, List[str]] = defaultdict(list)
        for chunk in plan.chunks:
            for dep in chunk.depends_on_chunk_ids:
                dependents[dep].append(chunk.chunk_id)

        ready = [cid for cid, degree in in_degree.items() if degree == 0]
        stages: List[ExecutionStage] = []
        processed = 0

        while ready:
            stage_chunks = sorted((by_id[cid] for cid in ready), key=lambda c: (c.sequence_index, c.chunk_id))
            stages.append(ExecutionStage(stage_index=len(stages), chunks=stage_chunks))
            processed += len(stage_chunks)

            next_ready: List[str] = []
            for chunk in stage_chunks:
                for dependent in dependents[chunk.chunk_id]:
                    in_degree[dependent] -= 1
                    if in_degree[dependent] == 0:
                        next_ready.append(dependent)
            ready = next_ready

        if processed != len(plan.chunks):
            raise SchedulingInvariantError(
                f"Scheduled {processed} of {len(plan.chunks)} chunks for plan {plan.plan_id}; "
                "the dependency graph contains an undetected cycle."
            )

        LOGGER.info(
            f"Built schedule for plan {plan.plan_id}: {len(stages)} stages "
            f"[{', '.join(str(len(s.chunks)) for s in stages)}]"
        )
        return stages

    @staticmethod
    def _find_cycles(chunks: List[WorkChunk], known_ids: set) -> List[List[str]]:
        """Three-color iterative DFS over depends-on edges; one cycle per back edge."""
        adjacency: Dict[str, List[str]] = {}
        for chunk in chunks:
            edges = adjacency.setdefault(chunk.chunk_id, [])
            for dep in chunk.depends_on_chunk_ids:
                if dep != chunk.chunk_id and dep in known_ids and dep not in edges:
                    edges.append(dep)

        color = {cid: _WHITE for cid in adjacency}
        cycles: List[List[str]] = []

        for root in adjacency:
            if color[root] != _WHITE:
                continue
            color[root] = _GRAY
            path = [root]
            stack = [iter(adjacency[root])]
            while stack:
                child = next(stack[-1], None)
                if child is None:
                    color[path.pop()] = _BLACK
                    stack.pop()
                    continue
                if color[child] == _GRAY:
                    start = path.index(child)
                    cycles.append(path[start:] + [child])
                elif color[child] == _WHITE:
                    color[child] = _GRAY
                    path.append(child)
                    stack.append(iter(adjacency[child]))

        return cycles
