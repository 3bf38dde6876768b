"""ChatTransport backed by LangChain chat models and a LangGraph tool loop.

Every session is a LangGraph thread: the agent node calls the session's
model, the tools node routes each tool call through the session's approval
handler before handing it to ``ToolNode``. History lives in the checkpointer
keyed by ``session_id``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, RemoveMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, MessagesState, StateGraph
from langgraph.prebuilt import ToolNode

from agentTeam.transport.base import Session, TransportConnectionError, TransportReply

LOGGER = logging.getLogger(__name__)

ModelResolver = Callable[[Optional[str]], BaseChatModel]

TOOL_LIMIT_MESSAGE = "Tool round limit reached; summarize what you have so far."


def message_text(message: BaseMessage) -> str:
    """Flatten message content (str or list of content parts) to plain text."""
    content = message.content
    if isinstance(content, str):
        return content
    parts = []
    for part in content or []:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, dict) and part.get("type") == "text":
            parts.append(part.get("text", ""))
    return "".join(parts)


class SessionState(MessagesState):
    tool_rounds: int


# ========== Graph nodes ==========

def _turn_context(config: RunnableConfig) -> Dict[str, Any]:
    return config["configurable"]


async def _agent_node(state: SessionState, config: RunnableConfig) -> Dict[str, Any]:
    context = _turn_context(config)
    session: Session = context["session"]
    messages: List[BaseMessage] = list(state["messages"])
    if session.system_prompt:
        messages.insert(0, SystemMessage(content=session.system_prompt))
    reply = await context["model"].ainvoke(messages, config)
    return {"messages": [reply]}


class ApprovalToolNode:
    """ToolNode wrapper that asks the session's approval handler before each call.

    Denied calls never reach the tool; the model sees a denial message instead.
    """

    async def __call__(self, state: SessionState, config: RunnableConfig) -> Dict[str, Any]:
        session: Session = _turn_context(config)["session"]
        last = state["messages"][-1]
        calls = list(getattr(last, "tool_calls", None) or [])

        approved = []
        denied: Dict[str, ToolMessage] = {}
        for call in calls:
            name = call["name"]
            call_id = call.get("id") or name
            if session.approval_handler is not None and not await session.approval_handler(name, call.get("args") or {}, call_id):
                LOGGER.info(f"Tool call {name} denied for session {session.session_id}")
                denied[call_id] = ToolMessage(
                    content=f"Tool call '{name}' was denied by the user.",
                    tool_call_id=call_id,
                    name=name,
                )
            else:
                approved.append(call)

        executed: Dict[str, ToolMessage] = {}
        if approved:
            LOGGER.info(f"Tool calls: {[c['name'] for c in approved]} (session {session.session_id})")
            tool_node = ToolNode(session.tools, handle_tool_errors=True)
            request = AIMessage(content="", tool_calls=approved)
            output = await tool_node.ainvoke({"messages": [request]}, config)
            for message in output["messages"]:
                executed[message.tool_call_id] = message

        results = []
        for call in calls:
            call_id = call.get("id") or call["name"]
            message = denied.get(call_id) or executed.get(call_id)
            if message is not None:
                results.append(message)
        return {"messages": results, "tool_rounds": state.get("tool_rounds", 0) + 1}


def _tool_limit_node(state: SessionState, config: RunnableConfig) -> Dict[str, Any]:
    session: Session = _turn_context(config)["session"]
    LOGGER.warning(f"Session {session.session_id} hit the tool round limit")
    last = state["messages"][-1]
    return {
        "messages": [
            ToolMessage(content=TOOL_LIMIT_MESSAGE, tool_call_id=call.get("id") or call["name"])
            for call in last.tool_calls
        ]
    }


def build_session_graph(max_tool_rounds: int, checkpointer=None):
    """Compose the agent -> tools -> agent loop shared by every session.

        START → agent ──no tool calls──→ END
                 ↑  ↓
                 tools   (or tool_limit → END once the round budget is spent)
    """

    def route_after_agent(state: SessionState) -> str:
        messages = state.get("messages") or []
        if not messages or not getattr(messages[-1], "tool_calls", None):
            return END
        if state.get("tool_rounds", 0) >= max_tool_rounds:
            return "tool_limit"
        return "tools"

    graph = StateGraph(SessionState)
    graph.add_node("agent", _agent_node)
    graph.add_node("tools", ApprovalToolNode())
    graph.add_node("tool_limit", _tool_limit_node)

    graph.add_edge(START, "agent")
    graph.add_conditional_edges(
        "agent",
        route_after_agent,
        {
            "tools": "tools",
            "tool_limit": "tool_limit",
            END: END,
        },
    )
    graph.add_edge("tools", "agent")
    graph.add_edge("tool_limit", END)

    return graph.compile(checkpointer=checkpointer)


class LangChainChatTransport:
    """Session-aware transport over any ``BaseChatModel``."""

    def __init__(self, model_resolver: ModelResolver, max_tool_rounds: int = 8):
        """
        Args:
            model_resolver: Maps a session's model id (or None) to a chat model
            max_tool_rounds: Upper bound on model -> tool -> model iterations per message
        """
        self._model_resolver = model_resolver
        self._max_tool_rounds = max_tool_rounds
        self._checkpointer = MemorySaver()
        self._graph = build_session_graph(max_tool_rounds, checkpointer=self._checkpointer)
        self._sessions: Dict[str, Session] = {}

    def has_active_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    async def terminate_session(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            await self._checkpointer.adelete_thread(session_id)
            LOGGER.debug(f"Terminated session {session_id}")

    def history(self, session_id: str) -> List[BaseMessage]:
        session = self._sessions.get(session_id)
        if session is None:
            return []
        snapshot = self._graph.get_state(self._thread(session_id))
        messages = list(snapshot.values.get("messages", []))
        if session.system_prompt:
            messages.insert(0, SystemMessage(content=session.system_prompt))
        return messages

    async def send_message(self, session: Session, prompt: str) -> TransportReply:
        self._sessions[session.session_id] = session
        thread = self._thread(session.session_id)
        before = await self._graph.aget_state(thread)
        known_ids = {m.id for m in before.values.get("messages", [])}

        config: RunnableConfig = {
            "configurable": {
                **thread["configurable"],
                "session": session,
                "model": self._bind_model(session),
            },
            "recursion_limit": 2 * self._max_tool_rounds + 5,
        }
        committed = False
        try:
            state = await self._graph.ainvoke(
                {"messages": [HumanMessage(content=prompt)], "tool_rounds": 0},
                config,
            )
            committed = True
        except httpx.TimeoutException:
            raise
        except httpx.TransportError as e:
            raise TransportConnectionError(f"LLM transport error: {e}") from e
        finally:
            # a failed or cancelled turn leaves no trace so a resend starts clean
            if not committed:
                await self._rollback(thread, known_ids)

        reply = next(m for m in reversed(state["messages"]) if isinstance(m, AIMessage))
        return TransportReply(content=message_text(reply))

    # ========== Internals ==========

    @staticmethod
    def _thread(session_id: str) -> RunnableConfig:
        return {"configurable": {"thread_id": session_id}}

    def _bind_model(self, session: Session):
        model = self._model_resolver(session.model_id)
        if session.tools:
            model = model.bind_tools(session.tools)
        if session.temperature is not None:
            model = model.bind(temperature=session.temperature)
        return model

    async def _rollback(self, thread: RunnableConfig, known_ids: set) -> None:
        snapshot = await self._graph.aget_state(thread)
        added = [m for m in snapshot.values.get("messages", []) if m.id not in known_ids]
        if added:
            await self._graph.aupdate_state(
                thread,
                {"messages": [RemoveMessage(id=m.id) for m in added]},
                as_node="agent",
            )
