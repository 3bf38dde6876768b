"""LLM-backed task decomposition into a validated chunk DAG."""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agentTeam.models.config import MultiAgentConfig
from agentTeam.models.plan import AgentRole, ChunkComplexity, OrchestrationPlan, WorkChunk
from agentTeam.planning.scheduler import DependencyScheduler
from agentTeam.utils.text import extract_json_block, truncate

LOGGER = logging.getLogger(__name__)

LlmCall = Callable[[str], Awaitable[str]]

FALLBACK_CHUNK_ID = "chunk-fallback"
FALLBACK_SUMMARY = "Fallback: executing task as a single unit"


class ChunkModel(BaseModel):
    """One chunk as emitted by the LLM (camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    chunk_id: str = Field(default="", alias="chunkId")
    sequence_index: Optional[int] = Field(default=None, alias="sequenceIndex")
    title: str = ""
    prompt: str = ""
    depends_on: List[str] = Field(default_factory=list, alias="dependsOn")
    working_scope: Optional[str] = Field(default=None, alias="workingScope")
    required_skills: List[str] = Field(default_factory=list, alias="requiredSkills")
    complexity: str = "Medium"
    assigned_role: str = Field(default="Generic", alias="assignedRole")

    @field_validator("chunk_id", "title", "prompt", "complexity", "assigned_role", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return "" if value is None else str(value).strip()

    @field_validator("depends_on", "required_skills", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(v).strip() for v in value if v is not None and str(v).strip()]


class PlanModel(BaseModel):
    """Structured plan returned by the decomposition prompt."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    plan_summary: str = Field(default="", alias="planSummary")
    chunks: List[ChunkModel] = Field(default_factory=list)


def fallback_plan(task_description: str) -> OrchestrationPlan:
    """Return a conservative single-chunk plan."""
    return OrchestrationPlan(
        task_description=task_description,
        plan_summary=FALLBACK_SUMMARY,
        chunks=[
            WorkChunk(
                chunk_id=FALLBACK_CHUNK_ID,
                sequence_index=0,
                title="Complete Task",
                prompt=task_description,
                complexity=ChunkComplexity.HIGH,
                assigned_role=AgentRole.GENERIC,
            )
        ],
    )


def _parse_enum(enum_cls, value: str, default):
    for member in enum_cls:
        if member.value.lower() == value.lower() or member.name.lower() == value.lower():
            return member
    return default


def build_decomposition_prompt(
    task_description: str,
    config: MultiAgentConfig,
    feedback: Optional[str] = None,
    previous_plan: Optional[OrchestrationPlan] = None,
) -> str:
    roles = ", ".join(r.value for r in AgentRole if r != AgentRole.PLANNING)
    example = json.dumps(
        {
            "planSummary": "Brief description of the overall plan",
            "chunks": [
                {
                    "chunkId": "chunk-1",
                    "sequenceIndex": 0,
                    "title": "Short title",
                    "prompt": "Detailed, self-contained instructions for this chunk",
                    "dependsOn": [],
                    "workingScope": "src/path/to/focus",
                    "requiredSkills": [],
                    "complexity": "Low|Medium|High",
                    "assignedRole": roles.replace(", ", "|"),
                }
            ],
        },
        indent=2,
    )

    sections = [
        "You are a task decomposition engine. Analyze the following task and break it down",
        "into independent, parallelizable work chunks that can be executed by specialized agents.",
        "",
        "## Available Agent Roles",
        roles,
        "",
        "## Constraints",
        f"- Maximum {config.max_parallel_sessions} parallel workers",
        "- Each chunk must be self-contained with a clear, actionable prompt",
        "- Minimize dependencies between chunks to maximize parallelism",
        "- Assign the most appropriate role to each chunk",
        '- Use "dependsOn" only when a chunk truly cannot start without another\'s output',
        "",
        "## Task",
        task_description,
    ]

    if feedback:
        sections += ["", "## Requested Changes", "The user reviewed the previous plan and asked for:", feedback]
        if previous_plan is not None:
            sections += ["", "### Previous Plan"]
            for chunk in previous_plan.chunks:
                deps = f" (depends on {', '.join(chunk.depends_on_chunk_ids)})" if chunk.depends_on_chunk_ids else ""
                sections.append(f"- {chunk.chunk_id}: {chunk.title}{deps}")

    sections += [
        "",
        "## Required Output Format",
        "Respond with ONLY a JSON object (no markdown, no explanation) in this exact schema:",
        "",
        example,
        "",
        "Rules:",
        '1. chunkId must be unique across all chunks (use "chunk-1", "chunk-2", etc.)',
        "2. sequenceIndex is zero-based order",
        "3. dependsOn is an array of chunkIds that must complete before this chunk starts",
        "4. workingScope is optional: the directory/file path to focus on",
        "5. requiredSkills is optional: tool names needed",
        "6. Respond with valid JSON only, no surrounding text or markdown fences",
    ]
    return "\n".join(sections)


class TaskDecomposer:
    """Turns a task description into a validated OrchestrationPlan.

    Malformed output is repaired where the intent is unambiguous (missing
    ids or titles, dangling or self dependencies). Anything else, including
    unparseable JSON, duplicates and cycles, falls back to a single-chunk plan.
    Transport failures from ``llm_call`` propagate unchanged.
    """

    def __init__(self, scheduler: Optional[DependencyScheduler] = None):
        self._scheduler = scheduler or DependencyScheduler()

    async def decompose(
        self,
        task_description: str,
        llm_call: LlmCall,
        config: MultiAgentConfig,
        feedback: Optional[str] = None,
        previous_plan: Optional[OrchestrationPlan] = None,
    ) -> OrchestrationPlan:
        prompt = build_decomposition_prompt(task_description, config, feedback, previous_plan)
        response = await llm_call(prompt)
        LOGGER.debug(f"Decomposition response ({len(response or '')} chars)")

        plan = self.parse_plan(response or "", task_description)
        LOGGER.info(f"Decomposed task into {len(plan.chunks)} chunk(s) for plan {plan.plan_id}")
        return plan

    def parse_plan(self, response_text: str, task_description: str) -> OrchestrationPlan:
        raw = extract_json_block(response_text)
        if not raw:
            LOGGER.warning("Decomposition response was empty; using fallback plan")
            return fallback_plan(task_description)

        try:
            dto = PlanModel.model_validate_json(raw)
        except ValidationError as e:
            LOGGER.warning(f"Decomposition JSON invalid ({e.error_count()} error(s)): {truncate(raw, 200)}")
            return fallback_plan(task_description)

        plan = self._build_plan(dto, task_description)
        if plan is None:
            return fallback_plan(task_description)

        validation = self._scheduler.validate_dependencies(plan)
        if not validation.is_valid:
            LOGGER.warning(f"Decomposed plan still invalid after repair: {'; '.join(validation.errors)}")
            return fallback_plan(task_description)
        return plan

    def _build_plan(self, dto: PlanModel, task_description: str) -> Optional[OrchestrationPlan]:
        chunks: List[WorkChunk] = []
        used_ids = {c.chunk_id for c in dto.chunks if c.chunk_id}

        for index, item in enumerate(dto.chunks):
            if not item.title and not item.prompt:
                LOGGER.warning(f"Dropping chunks[{index}]: no title and no prompt")
                continue

            chunk_id = item.chunk_id
            if not chunk_id:
                chunk_id = f"chunk-{index + 1}"
                while chunk_id in used_ids:
                    chunk_id += "-auto"
                used_ids.add(chunk_id)
                LOGGER.warning(f"chunks[{index}] had no chunkId; assigned '{chunk_id}'")

            chunks.append(WorkChunk(
                chunk_id=chunk_id,
                sequence_index=item.sequence_index if item.sequence_index is not None else index,
                title=item.title or truncate(item.prompt, 60),
                prompt=item.prompt or item.title,
                depends_on_chunk_ids=item.depends_on,
                working_scope=item.working_scope or None,
                required_skills=item.required_skills,
                complexity=_parse_enum(ChunkComplexity, item.complexity, ChunkComplexity.MEDIUM),
                assigned_role=_parse_enum(AgentRole, item.assigned_role, AgentRole.GENERIC),
            ))

        if not chunks:
            LOGGER.warning("Decomposition produced no usable chunks")
            return None

        known = {c.chunk_id for c in chunks}
        for chunk in chunks:
            kept = [d for d in chunk.depends_on_chunk_ids if d in known and d != chunk.chunk_id]
            if len(kept) != len(chunk.depends_on_chunk_ids):
                dropped = sorted(set(chunk.depends_on_chunk_ids) - set(kept))
                LOGGER.warning(f"Chunk '{chunk.chunk_id}': stripped invalid dependencies {dropped}")
                chunk.depends_on_chunk_ids = kept

        return OrchestrationPlan(
            task_description=task_description,
            plan_summary=dto.plan_summary or f"Plan with {len(chunks)} chunk(s)",
            chunks=chunks,
        )
