"""AgentTeam: an orchestrator LLM that plans a task and runs it on a team of worker sessions."""

__version__ = "0.1.0"
