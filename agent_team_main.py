#!/usr/bin/env python3
"""AgentTeam - Main entry point.

Usage:
    python agent_team_main.py

The orchestrator clarifies the task, decomposes it into a dependency-ordered
plan, waits for approval, runs the chunks on parallel worker sessions and
synthesizes one report. Configuration comes from .env (see .env.example).
"""

from __future__ import annotations

import asyncio
import signal
import sys
from pathlib import Path

# Add project root to sys.path for imports
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from agentTeam.cli import AgentTeamCLI
from agentTeam.config.settings import get_settings
from agentTeam.runtime import build_orchestrator
from agentTeam.utils.logging_utils import setup_logging


async def async_main():
    settings = get_settings()
    logger = setup_logging(settings.observability.log_dir)
    logger.info("AgentTeam starting...")

    cli = None

    async def prompt_tool_approval(request):
        return await cli.prompt_tool_approval(request)

    try:
        application = await build_orchestrator(prompt_tool_approval, settings=settings)
        logger.info("Application built successfully")

        cli = AgentTeamCLI(application.orchestrator, approval_queue=application.approval_queue)

        def signal_handler(sig, frame):
            logger.info(f"\nReceived signal {sig}, shutting down...")
            raise KeyboardInterrupt

        signal.signal(signal.SIGTERM, signal_handler)

        try:
            await cli.run()
        except KeyboardInterrupt:
            logger.info("\nKeyboardInterrupt received, shutting down...")

    except Exception as e:
        logger.error(f"Fatal error during startup: {e}", exc_info=True)
        print(f"\n❌ 启动失败: {e}")
        print("请查看日志文件获取详细信息")


def main():
    """Synchronous wrapper for async_main."""
    asyncio.run(async_main())


if __name__ == "__main__":
    main()
