"""Prompts sent to the orchestrator session and parsers for its replies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from agentTeam.models.orchestrator import ClarificationRound
from agentTeam.models.plan import AgentResult, WorkChunk
from agentTeam.models.report import ConsolidatedReport
from agentTeam.utils.text import parse_json_object, truncate

LOGGER = logging.getLogger(__name__)

DEPENDENCY_DIGEST_LIMIT = 500
FOLLOW_UP_SUMMARY_LIMIT = 4000

ORCHESTRATOR_SYSTEM_PROMPT = """You are a general-purpose multi-agent orchestrator. Your role is to:
1. Evaluate user tasks and determine if clarification is needed
2. Break complex tasks into parallel work chunks. Tasks can be of ANY type: coding, research, analysis, writing, data processing, comparisons, creative work.
3. Coordinate worker agents and synthesize their results
4. Maintain context across follow-up interactions

You are NOT limited to software engineering. Never reject a task because it is "not coding". Any task that can be decomposed into steps is valid.

Always respond with valid JSON when asked for structured output.
Be concise and focused on task decomposition and coordination."""

_EVALUATION_TEMPLATE = """You are the **Agent Team Orchestrator**, a general-purpose task executor that coordinates multiple parallel worker agents.

Evaluate the following user request and determine the correct next action.

RULES (follow strictly):
1. If the request is a greeting, casual chat, or other conversational message ("hi", "thanks", "how are you"):
   - Respond with a friendly greeting, briefly introduce yourself and encourage the user to submit a task
   - Do NOT plan or clarify
2. If the request is vague, ambiguous, incomplete, or lacks the detail needed for a concrete execution plan, you MUST ask clarifying questions. Do NOT proceed to planning with insufficient information.
3. Use "proceed" when the request is a clear, specific, actionable task that can be decomposed into work chunks.

RESPOND WITH EXACTLY ONE OF THESE JSON FORMATS:

If the request is conversational / not a task:
{{"action": "respond", "message": "your friendly response"}}

If clarification is needed:
{{"action": "clarify", "questions": ["specific question 1", "specific question 2"]}}

If the request is a clear, actionable task ready for planning:
{{"action": "proceed"}}

USER REQUEST:
{request}"""

_FOLLOW_UP_TEMPLATE = """The user sent a follow-up message after a completed orchestration.
{previous}
Decide whether you can answer it directly or whether it asks for new work that needs a fresh plan.

RESPOND WITH EXACTLY ONE OF THESE JSON FORMATS:

If you can answer directly (questions about the results, explanations):
{{"action": "respond", "message": "your answer"}}

If it requests new work to be planned and executed:
{{"action": "proceed"}}

FOLLOW-UP MESSAGE:
{message}"""


class DecisionAction(str, Enum):
    RESPOND = "respond"
    CLARIFY = "clarify"
    PROCEED = "proceed"


@dataclass
class OrchestratorDecision:
    action: DecisionAction
    message: Optional[str] = None
    questions: List[str] = field(default_factory=list)


def build_evaluation_prompt(task_prompt: str) -> str:
    return _EVALUATION_TEMPLATE.format(request=task_prompt)


def build_follow_up_prompt(message: str, previous_report: Optional[ConsolidatedReport] = None) -> str:
    previous = ""
    if previous_report is not None:
        previous = (
            "\n## Previous Result\n"
            f"{truncate(previous_report.conversational_summary, FOLLOW_UP_SUMMARY_LIMIT)}\n"
        )
    return _FOLLOW_UP_TEMPLATE.format(previous=previous, message=message)


def parse_orchestrator_decision(reply: str, default: DecisionAction = DecisionAction.PROCEED) -> OrchestratorDecision:
    """Interpret a respond/clarify/proceed JSON reply.

    Unparseable replies map to ``default``; for RESPOND the raw reply becomes
    the message. "plan" is accepted as a synonym for proceed, and a clarify or
    respond without content degrades to proceed.
    """
    data = parse_json_object(reply or "")
    if data is None:
        LOGGER.debug(f"Orchestrator reply is not JSON, defaulting to {default.value}: {truncate(reply, 120)}")
        if default == DecisionAction.RESPOND:
            return OrchestratorDecision(DecisionAction.RESPOND, message=(reply or "").strip())
        return OrchestratorDecision(default)

    action = str(data.get("action") or "").strip().lower()

    if action == DecisionAction.CLARIFY.value:
        raw_questions = data.get("questions") or []
        if isinstance(raw_questions, str):
            raw_questions = [raw_questions]
        questions = [str(q).strip() for q in raw_questions if q is not None and str(q).strip()]
        if questions:
            return OrchestratorDecision(DecisionAction.CLARIFY, questions=questions)

    if action == DecisionAction.RESPOND.value:
        message = data.get("message")
        message = str(message).strip() if message is not None else (reply or "").strip()
        if message:
            return OrchestratorDecision(DecisionAction.RESPOND, message=message)

    return OrchestratorDecision(DecisionAction.PROCEED)


def build_enriched_task(original_task: str, rounds: Iterable[ClarificationRound]) -> str:
    """Fold answered clarification rounds into the task handed to the decomposer."""
    answered = [r for r in rounds if r.answer]
    if not answered:
        return original_task

    lines = ["## Original Task", original_task, "", "## Clarifications Provided"]
    for number, round_ in enumerate(answered, 1):
        lines += [
            f"### Round {number}",
            f"**Questions asked:** {truncate('; '.join(round_.questions), 500)}",
            f"**User's response:** {round_.answer}",
            "",
        ]
    return "\n".join(lines).rstrip() + "\n"


def build_follow_up_task(message: str, previous_report: Optional[ConsolidatedReport]) -> str:
    if previous_report is None:
        return message
    return "\n".join([
        "## Follow-up Task",
        message,
        "",
        "## Context from the Previous Run",
        truncate(previous_report.conversational_summary, FOLLOW_UP_SUMMARY_LIMIT),
    ])


def build_resolved_prompts(chunks: Iterable[WorkChunk], completed: Dict[str, AgentResult]) -> Dict[str, str]:
    """Prompt per chunk id with upstream outputs prepended; chunks themselves are untouched."""
    resolved = {}
    for chunk in chunks:
        outputs = [
            f"[Output from '{dep_id}']: {truncate(completed[dep_id].response or '(no output)', DEPENDENCY_DIGEST_LIMIT)}"
            for dep_id in chunk.depends_on_chunk_ids
            if dep_id in completed
        ]
        if outputs:
            resolved[chunk.chunk_id] = "DEPENDENCY OUTPUTS:\n" + "\n".join(outputs) + f"\n\nTASK:\n{chunk.prompt}"
    return resolved
