"""Interactive console for the orchestrator.

Long operations (planning, execution, follow-ups) run as background tasks
so the input loop stays responsive: during execution free text is injected
into the orchestrator, and tool approval prompts are answered inline.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from agentTeam.aggregation import strip_action_markers
from agentTeam.events import OrchestratorEvent, OrchestratorEventType, StageEvent, WorkerProgressEvent
from agentTeam.hitl import ApprovalScope, ToolApprovalRequest, ToolApprovalResponse
from agentTeam.models.orchestrator import OrchestrationPhase, OrchestratorResponse, PlanApprovalDecision
from agentTeam.orchestrator import OrchestratorService
from agentTeam.utils.errors import InvalidPhaseError

LOGGER = logging.getLogger(__name__)

P = OrchestrationPhase

_WORKER_ICONS = {
    OrchestratorEventType.WORKER_STARTED: "▶",
    OrchestratorEventType.WORKER_COMPLETED: "✅",
    OrchestratorEventType.WORKER_FAILED: "❌",
    OrchestratorEventType.WORKER_RETRYING: "🔁",
    OrchestratorEventType.WORKER_SKIPPED: "⏭",
}


def format_tool_args(args: Dict[str, Any], max_length: int = 60) -> str:
    """One-line rendering of tool arguments for the approval prompt."""
    parts = []
    for key, value in (args or {}).items():
        text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False)
        if len(text) > max_length:
            text = text[:max_length] + "..."
        parts.append(f"{key}={text}")
    return ", ".join(parts) or "(无)"


class AgentTeamCLI:
    """Console front-end: command routing plus phase-aware message handling."""

    BASE_COMMANDS: Dict[str, str] = {
        "/quit": "退出程序",
        "/exit": "退出程序",
        "/help": "显示帮助信息",
        "/approve": "批准当前计划并开始执行",
        "/changes <意见>": "要求修改当前计划",
        "/reject": "拒绝当前计划",
        "/cancel": "取消正在进行的任务",
        "/reset": "清空上下文，开始新对话",
        "/status": "显示当前阶段与任务进度",
    }

    def __init__(self, orchestrator: OrchestratorService, approval_queue=None):
        self.orchestrator = orchestrator
        self.approval_queue = approval_queue
        self._command_handlers = self._build_command_handlers()
        self._running = False
        self._operation: Optional[asyncio.Task] = None
        self._pending_approval: Optional[asyncio.Future] = None

        self._unsubscribe = orchestrator.events.subscribe(self._on_event)
        LOGGER.info("AgentTeamCLI initialized")

    def _build_command_handlers(self) -> Dict[str, Callable]:
        return {
            "/quit": self._handle_quit,
            "/exit": self._handle_quit,
            "/help": self._handle_help,
            "/approve": self._handle_approve,
            "/changes": self._handle_changes,
            "/reject": self._handle_reject,
            "/cancel": self._handle_cancel,
            "/reset": self._handle_reset,
            "/status": self._handle_status,
        }

    @property
    def commands(self) -> Dict[str, str]:
        return self.BASE_COMMANDS

    # ========== Main Loop ==========

    async def run(self):
        self._running = True
        self.print_welcome()

        while self._running:
            try:
                user_input = await self.get_input()

                if not user_input:
                    continue

                if self._pending_approval is not None and not self._pending_approval.done():
                    self._answer_approval(user_input)
                elif user_input.startswith("/"):
                    should_continue = await self.handle_command(user_input)
                    if not should_continue:
                        break
                else:
                    await self.handle_user_message(user_input)

            except (KeyboardInterrupt, EOFError):
                print("\n再见！")
                LOGGER.info("Session interrupted by user")
                break
            except Exception as e:
                LOGGER.error(f"Unexpected error in main loop: {e}", exc_info=True)
                print(f"❌ 发生错误: {e}")

        await self.on_shutdown()

    async def on_shutdown(self):
        if self._operation is not None and not self._operation.done():
            LOGGER.info("Cancelling running operation before shutdown")
            await self.orchestrator.cancel()
        self._unsubscribe()
        LOGGER.info("CLI shutting down")

    def print_welcome(self):
        print("AgentTeam 多智能体编排 CLI 已就绪。")
        print("描述你的任务，编排器会先分析、再拆分计划，批准后由多个 worker 并行执行。")
        print("\n输入 /help 查看命令列表\n")

    async def get_input(self) -> str:
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, lambda: input("You> ").strip())

    # ========== Command Handling ==========

    async def handle_command(self, cmd: str) -> bool:
        parts = cmd.split(maxsplit=1)
        cmd_name = parts[0].lower()
        cmd_arg = parts[1] if len(parts) > 1 else None

        handler = self._command_handlers.get(cmd_name)
        if handler:
            return await handler(cmd_arg)
        print(f"❌ 未知命令: {cmd_name}")
        print("   输入 /help 查看可用命令")
        return True

    async def _handle_quit(self, arg: Optional[str]) -> bool:
        print("会话结束。")
        LOGGER.info("Exit requested by /quit command")
        return False

    async def _handle_help(self, arg: Optional[str]) -> bool:
        print("\n可用命令:")
        for cmd, desc in self.commands.items():
            print(f"  {cmd:<20} {desc}")
        print()
        return True

    async def _handle_approve(self, arg: Optional[str]) -> bool:
        self._start(lambda: self.orchestrator.approve_plan(PlanApprovalDecision.APPROVE))
        return True

    async def _handle_changes(self, arg: Optional[str]) -> bool:
        if not arg:
            print("❌ 请提供修改意见，例如: /changes 把测试拆成单独的步骤")
            return True
        self._start(lambda: self.orchestrator.approve_plan(PlanApprovalDecision.REQUEST_CHANGES, arg))
        return True

    async def _handle_reject(self, arg: Optional[str]) -> bool:
        self._start(lambda: self.orchestrator.approve_plan(PlanApprovalDecision.REJECT))
        return True

    async def _handle_cancel(self, arg: Optional[str]) -> bool:
        if self.orchestrator.phase in (P.IDLE, P.CANCELLED) and not self.orchestrator.is_busy:
            print("没有正在进行的任务。\n")
            return True
        response = await self.orchestrator.cancel()
        self.print_response(response)
        return True

    async def _handle_reset(self, arg: Optional[str]) -> bool:
        await self.orchestrator.reset_context()
        print("✅ 上下文已清空。\n")
        return True

    async def _handle_status(self, arg: Optional[str]) -> bool:
        orch = self.orchestrator
        print(f"\n当前阶段: {orch.phase.value}{' (处理中)' if orch.is_busy else ''}")
        plan = orch.current_plan
        if plan is not None:
            print(f"计划: {plan.plan_id[:8]}... ({len(plan.chunks)} 个子任务)")
            for chunk in plan.chunks:
                retry = f", 重试 {chunk.retry_count} 次" if chunk.retry_count else ""
                print(f"  - [{chunk.chunk_id}] {chunk.title}: {chunk.status.value}{retry}")
        if self.approval_queue is not None and self.approval_queue.pending_count:
            print(f"待审批工具调用: {self.approval_queue.pending_count}")
        print()
        return True

    # ========== Messages ==========

    async def handle_user_message(self, message: str):
        orch = self.orchestrator
        phase = orch.phase

        if phase == P.EXECUTING:
            response = await orch.inject_instruction(message)
            print(f"💬 {response.message}\n")
            return

        if orch.is_busy:
            print("⏳ 正在处理中，请稍候，或输入 /cancel 取消。\n")
            return

        if phase == P.CLARIFYING:
            self._start(lambda: orch.respond_to_clarification(message))
        elif phase == P.AWAITING_APPROVAL:
            self._start(lambda: orch.approve_plan(PlanApprovalDecision.REQUEST_CHANGES, message))
        elif phase == P.COMPLETED:
            self._start(lambda: orch.send_follow_up(message))
        else:
            self._start(lambda: orch.submit_task(message))

    def _start(self, operation: Callable[[], Awaitable[OrchestratorResponse]]) -> None:
        if self._operation is not None and not self._operation.done():
            print("⏳ 上一个操作尚未完成。\n")
            return
        self._operation = asyncio.create_task(self._run_operation(operation))

    async def _run_operation(self, operation: Callable[[], Awaitable[OrchestratorResponse]]) -> None:
        try:
            response = await operation()
        except InvalidPhaseError as e:
            print(f"\n❌ {e.user_message}\n")
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.error(f"Operation failed: {e}", exc_info=True)
            print(f"\n❌ 发生错误: {e}\n")
            return
        self.print_response(response)

    def print_response(self, response: OrchestratorResponse) -> None:
        print()
        if response.report is not None:
            self.print_report(response)
        elif response.is_error:
            print(f"❌ {response.message}")
        elif response.plan is not None:
            self.print_plan(response)
        else:
            print(f"Orchestrator> {response.message}")

        if response.questions:
            for i, question in enumerate(response.questions, 1):
                print(f"  {i}. {question}")
            print("\n请直接输入你的回答。")
        print()

    def print_plan(self, response: OrchestratorResponse) -> None:
        plan = response.plan
        print(f"📋 计划: {plan.plan_summary}")
        for chunk in plan.chunks:
            deps = f" ← {', '.join(chunk.depends_on_chunk_ids)}" if chunk.depends_on_chunk_ids else ""
            print(f"  [{chunk.chunk_id}] {chunk.title} ({chunk.assigned_role.value}){deps}")
        print("\n输入 /approve 批准，/changes <意见> 修改，/reject 拒绝。")

    def print_report(self, response: OrchestratorResponse) -> None:
        report = response.report
        stats = report.stats
        print(strip_action_markers(report.conversational_summary))
        print(
            f"\n📊 {stats.succeeded_chunks}/{stats.total_chunks} 成功, {stats.failed_chunks} 失败"
            f"{f', {stats.skipped_chunks} 跳过' if stats.skipped_chunks else ''}, "
            f"耗时 {stats.total_duration:.1f}s"
        )
        if response.error is not None:
            print(f"⚠️  {getattr(response.error, 'user_message', response.error)}")
        if report.next_steps:
            print("\n建议的下一步:")
            for i, step in enumerate(report.next_steps, 1):
                print(f"  {i}. {step}")

    # ========== Events ==========

    def _on_event(self, event: OrchestratorEvent) -> None:
        if isinstance(event, WorkerProgressEvent) and event.event_type in _WORKER_ICONS:
            line = f"  {_WORKER_ICONS[event.event_type]} {event.chunk_title or event.chunk_id}"
            if event.event_type in (OrchestratorEventType.WORKER_FAILED, OrchestratorEventType.WORKER_RETRYING):
                line += f": {event.message}"
            print(line)
        elif isinstance(event, StageEvent) and event.event_type == OrchestratorEventType.STAGE_STARTED:
            print(f"\n📦 阶段 {event.stage_index + 1}/{event.total_stages}: {len(event.chunk_ids)} 个子任务")
        elif event.event_type in (
            OrchestratorEventType.ORCHESTRATOR_COMMENTARY,
            OrchestratorEventType.CLARIFICATION_RECEIVED,
            OrchestratorEventType.AGGREGATION_STARTED,
        ):
            print(f"  … {event.message}")

    # ========== Tool approval ==========

    async def prompt_tool_approval(self, request: ToolApprovalRequest) -> ToolApprovalResponse:
        """Approval callback for InteractiveApprovalService; answered from the main input loop."""
        print()
        print(f"🛡️  工具审批: {request.tool_name}")
        if request.description:
            print(f"   原因: {request.description}")
        print(f"   参数: {format_tool_args(request.tool_args)}")
        print("   批准? [y/n/a(本会话始终允许)] > ", end="", flush=True)

        self._pending_approval = asyncio.get_running_loop().create_future()
        try:
            return await self._pending_approval
        finally:
            self._pending_approval = None

    def _answer_approval(self, text: str) -> None:
        choice = text.strip().lower()
        if choice in ["y", "yes", "是"]:
            print("✓ 已批准")
            response = ToolApprovalResponse(approved=True)
        elif choice in ["a", "always", "总是"]:
            print("✓ 已批准（本会话内不再询问）")
            response = ToolApprovalResponse(approved=True, scope=ApprovalScope.SESSION, remember_decision=True)
        elif choice in ["n", "no", "否"]:
            print("✗ 已拒绝")
            response = ToolApprovalResponse(approved=False, reason="Denied by user")
        else:
            print("   请输入 y、n 或 a")
            return
        self._pending_approval.set_result(response)
