"""Tests for result aggregation, fallback summaries and next-step extraction."""

import asyncio

import pytest

from agentTeam.aggregation import (
    ResultAggregator,
    build_synthesis_prompt,
    compute_stats,
    extract_next_steps,
    strip_action_markers,
)
from agentTeam.models.plan import AgentResult, AgentStatus
from conftest import make_chunk, make_plan


@pytest.fixture
def plan_and_results():
    ok = make_chunk("ok", title="Write code")
    bad = make_chunk("bad", title="Run tests")
    skipped = make_chunk("later", ["bad"], title="Deploy")
    ok.retry_count = 1
    skipped.transition_to(AgentStatus.SKIPPED)
    plan = make_plan(ok, bad, skipped, task="Ship the feature")
    results = [
        AgentResult.success("ok", "All code written", 1.5),
        AgentResult.failure("bad", "pytest exploded", 0.5),
        AgentResult.failure("later", "Skipped: upstream dependency failed"),
    ]
    return plan, results


# ========== Statistics ==========

def test_stats_count_skipped_separately(plan_and_results):
    plan, results = plan_and_results
    stats = compute_stats(plan, results, total_duration=3.0)
    assert stats.total_chunks == 3
    assert stats.succeeded_chunks == 1
    assert stats.failed_chunks == 1
    assert stats.skipped_chunks == 1
    assert stats.retried_chunks == 1
    assert stats.total_worker_time == pytest.approx(2.0)
    assert stats.total_duration == 3.0


# ========== Aggregation ==========

@pytest.mark.asyncio
async def test_llm_summary_used_and_next_steps_extracted(plan_and_results):
    plan, results = plan_and_results
    prompts = []

    async def llm_call(prompt):
        prompts.append(prompt)
        return "Work is mostly done.\n### Recommended Next Steps\n- [ACTION:Fix the tests]\n- [ACTION:Redeploy]"

    report = await ResultAggregator().aggregate(plan, results, llm_call, total_duration=2.0)

    assert not report.used_fallback
    assert report.conversational_summary.startswith("Work is mostly done.")
    assert report.next_steps == ["Fix the tests", "Redeploy"]
    assert report.plan_id == plan.plan_id
    assert "Ship the feature" in prompts[0]
    assert "### Write code (✅ Success)" in prompts[0]
    assert "Error: pytest exploded" in prompts[0]


@pytest.mark.parametrize("failure", [RuntimeError("llm down"), ""])
@pytest.mark.asyncio
async def test_fallback_summary_on_error_or_empty_reply(plan_and_results, failure):
    plan, results = plan_and_results

    async def llm_call(prompt):
        if isinstance(failure, Exception):
            raise failure
        return failure

    report = await ResultAggregator().aggregate(plan, results, llm_call, total_duration=2.0)

    assert report.used_fallback
    summary = report.conversational_summary
    assert summary.startswith("## Task Completion Report")
    assert "**Task:** Ship the feature" in summary
    assert "- **Retried:** 1" in summary
    assert "- **Skipped:** 1" in summary
    assert "- ✅ **Write code** (1.5s)" in summary
    assert "  - Error: pytest exploded" in summary
    assert report.stats.failed_chunks == 1


@pytest.mark.asyncio
async def test_no_llm_uses_fallback():
    plan = make_plan(make_chunk("a"))
    report = await ResultAggregator().aggregate(plan, [AgentResult.success("a", "x", 0.1)], None)
    assert report.used_fallback
    assert "Retried" not in report.conversational_summary


@pytest.mark.asyncio
async def test_cancellation_propagates():
    async def llm_call(prompt):
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        await ResultAggregator().aggregate(make_plan(make_chunk("a")), [], llm_call)


def test_synthesis_prompt_truncates_long_outputs():
    plan = make_plan(make_chunk("a"))
    prompt = build_synthesis_prompt(plan, [AgentResult.success("a", "x" * 5000, 1.0)])
    assert "x" * 3000 + "\n\n[...truncated for synthesis...]" in prompt
    assert "x" * 3001 not in prompt


def test_synthesis_prompt_truncates_long_errors():
    plan = make_plan(make_chunk("a"))
    prompt = build_synthesis_prompt(plan, [AgentResult.failure("a", "Traceback\n" + "e" * 8000, 1.0)])
    assert "Error: Traceback\n" + "e" * 2990 + "\n\n[...truncated for synthesis...]" in prompt
    assert "e" * 2991 not in prompt


# ========== Next steps ==========

def test_action_markers_deduplicated_case_insensitively():
    summary = "[ACTION:Run tests] then [action:run TESTS] and [ACTION: Review docs ]"
    assert extract_next_steps(summary) == ["Run tests", "Review docs"]


def test_list_items_under_heading_when_no_markers():
    summary = "Done.\n\n## Next Steps\n- **Add** caching\n* Write *more* docs\n\nUnrelated text\n- not a step"
    assert extract_next_steps(summary) == ["Add caching", "Write more docs"]


@pytest.mark.parametrize("summary", [None, "", "   ", "No steps here.\n- stray item"])
def test_no_steps(summary):
    assert extract_next_steps(summary) == []


def test_strip_action_markers():
    assert strip_action_markers("- [ACTION:Run tests]\n- [ACTION: Ship ]") == "- Run tests\n- Ship"
    assert strip_action_markers(None) == ""
