"""Synthesis of worker results into one consolidated report."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional

from agentTeam.aggregation.next_steps import extract_next_steps
from agentTeam.models.plan import AgentResult, AgentStatus, OrchestrationPlan
from agentTeam.models.report import ConsolidatedReport, OrchestrationStats
from agentTeam.utils.text import truncate

LOGGER = logging.getLogger(__name__)

LlmCall = Callable[[str], Awaitable[str]]

SYNTHESIS_OUTPUT_LIMIT = 3000


def compute_stats(
    plan: OrchestrationPlan,
    results: List[AgentResult],
    total_duration: float = 0.0,
) -> OrchestrationStats:
    """Deterministic counts over ``results`` and the plan's chunk statuses.

    Skipped chunks carry a failure result but are counted as skipped, not failed.
    """
    statuses = [c.status for c in plan.chunks]
    skipped_ids = {c.chunk_id for c in plan.chunks if c.status == AgentStatus.SKIPPED}
    return OrchestrationStats(
        total_chunks=len(plan.chunks) if plan.chunks else len(results),
        succeeded_chunks=sum(1 for r in results if r.is_success),
        failed_chunks=sum(1 for r in results if not r.is_success and r.chunk_id not in skipped_ids),
        retried_chunks=sum(1 for c in plan.chunks if c.retry_count > 0),
        skipped_chunks=statuses.count(AgentStatus.SKIPPED),
        aborted_chunks=statuses.count(AgentStatus.ABORTED),
        total_duration=total_duration,
        total_worker_time=sum(r.duration for r in results),
    )


def _titles(plan: OrchestrationPlan) -> Dict[str, str]:
    return {c.chunk_id: c.title for c in plan.chunks}


def build_synthesis_prompt(plan: OrchestrationPlan, results: List[AgentResult]) -> str:
    titles = _titles(plan)
    lines = [
        "You are a synthesis agent. Your job is to combine the outputs of multiple",
        "parallel worker agents into a single, coherent, conversational summary.",
        "",
        "## Original Task",
        plan.task_description,
        "",
        "## Plan Summary",
        plan.plan_summary,
        "",
        "## Worker Results",
    ]

    for result in results:
        title = titles.get(result.chunk_id, result.chunk_id)
        lines += ["", f"### {title} ({'✅ Success' if result.is_success else '❌ Failed'})"]
        if result.is_success:
            lines.append(truncate(
                result.response or "(no output)",
                SYNTHESIS_OUTPUT_LIMIT,
                "\n\n[...truncated for synthesis...]",
            ))
        else:
            lines.append("Error: " + truncate(
                result.error_message or "Unknown error",
                SYNTHESIS_OUTPUT_LIMIT,
                "\n\n[...truncated for synthesis...]",
            ))

    lines += [
        "",
        "## Instructions",
        "1. Produce a clear, conversational summary of all the work that was done.",
        "2. Highlight key accomplishments and any issues encountered.",
        "3. If any workers failed, explain what went wrong and suggest next steps.",
        "4. Keep the summary concise but comprehensive.",
        "5. Use markdown formatting for readability.",
        "6. At the end, include a section titled '### Recommended Next Steps' with 2-5 actionable next steps.",
        "   Each next step MUST be a markdown list item with an [ACTION:description] marker.",
        "   Example:",
        "   ### Recommended Next Steps",
        "   - [ACTION:Run the full test suite to verify all changes]",
        "   - [ACTION:Review the generated code for edge cases]",
    ]
    return "\n".join(lines)


def build_fallback_summary(
    plan: OrchestrationPlan,
    results: List[AgentResult],
    stats: OrchestrationStats,
) -> str:
    titles = _titles(plan)
    lines = [
        "## Task Completion Report",
        "",
        f"**Task:** {plan.task_description}",
        "",
        "### Summary",
        f"- **Total chunks:** {stats.total_chunks}",
        f"- **Succeeded:** {stats.succeeded_chunks}",
        f"- **Failed:** {stats.failed_chunks}",
    ]
    if stats.retried_chunks > 0:
        lines.append(f"- **Retried:** {stats.retried_chunks}")
    if stats.skipped_chunks > 0:
        lines.append(f"- **Skipped:** {stats.skipped_chunks}")

    lines += ["", "### Worker Results"]
    for result in results:
        status = "✅" if result.is_success else "❌"
        lines.append(f"- {status} **{titles.get(result.chunk_id, result.chunk_id)}** ({result.duration:.1f}s)")
        if not result.is_success and result.error_message:
            lines.append(f"  - Error: {result.error_message}")
    return "\n".join(lines)


class ResultAggregator:
    """Builds a ConsolidatedReport; never fails the task.

    Statistics are always computed. The narrative comes from one LLM
    synthesis call; any error or empty reply switches to a deterministic
    markdown summary built from the same data. Cancellation propagates.
    """

    async def aggregate(
        self,
        plan: OrchestrationPlan,
        results: List[AgentResult],
        llm_call: Optional[LlmCall],
        total_duration: Optional[float] = None,
    ) -> ConsolidatedReport:
        started = time.monotonic()
        LOGGER.info(f"Aggregating {len(results)} worker result(s) for plan {plan.plan_id}")

        summary = ""
        if llm_call is not None:
            prompt = build_synthesis_prompt(plan, results)
            LOGGER.debug(f"Sending synthesis prompt ({len(prompt)} chars) for plan {plan.plan_id}")
            try:
                summary = (await llm_call(prompt) or "").strip()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.warning(f"Synthesis failed for plan {plan.plan_id}, using fallback summary: {e}")
            else:
                if not summary:
                    LOGGER.warning(f"Synthesis for plan {plan.plan_id} was empty, using fallback summary")

        elapsed = total_duration if total_duration is not None else time.monotonic() - started
        stats = compute_stats(plan, results, elapsed)

        used_fallback = not summary
        if used_fallback:
            summary = build_fallback_summary(plan, results, stats)

        report = ConsolidatedReport(
            plan_id=plan.plan_id,
            conversational_summary=summary,
            worker_results=list(results),
            stats=stats,
            next_steps=extract_next_steps(summary),
            used_fallback=used_fallback,
        )
        LOGGER.info(
            f"Aggregation complete for plan {plan.plan_id}: "
            f"{stats.succeeded_chunks}/{stats.total_chunks} succeeded"
        )
        return report
