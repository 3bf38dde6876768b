"""Risk checker deciding which worker tool calls need human approval."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

LOGGER = logging.getLogger(__name__)

# 只读工具：不修改工作区，可在配置允许时自动放行
READ_ONLY_TOOLS = frozenset({
    "read_file",
    "list_dir",
    "list_files",
    "list_workspace_files",
    "file_search",
    "grep_search",
    "find_files",
    "code_analysis",
    "web_search",
})

RISK_LEVELS_ORDER = ["critical", "high", "medium", "low"]


@dataclass
class ApprovalDecision:
    """审批决策结果"""

    needs_approval: bool
    reason: str = ""
    risk_level: str = "low"  # low, medium, high, critical


class ApprovalChecker:
    """工具调用风险检测器

    Rule layers, highest priority first:
    1. custom checkers registered in code
    2. global risk patterns from the rules file (cross-tool)
    3. per-tool patterns from the rules file
    4. built-in rules for shell commands, file writes and http fetches
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Args:
            config_path: YAML rules file (optional)
        """
        self.config_path = Path(config_path) if config_path else None
        self.rules = self._load_config()
        self.custom_checkers: Dict[str, Callable[[dict], ApprovalDecision]] = {}
        self.global_patterns = self._load_global_patterns()

    def _load_config(self) -> dict:
        if not self.config_path or not self.config_path.exists():
            return {}
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                return yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            LOGGER.warning(f"Failed to load approval rules from {self.config_path}: {e}")
            return {}

    def _load_global_patterns(self) -> Dict[str, Any]:
        risk_patterns = self.rules.get("global", {}).get("risk_patterns", {})
        patterns_by_level = {}
        for level, pattern_config in risk_patterns.items():
            if isinstance(pattern_config, dict):
                patterns_by_level[level] = {
                    "patterns": pattern_config.get("patterns", []),
                    "action": pattern_config.get("action", "require_approval"),
                    "reason": pattern_config.get("reason", f"Matches global {level} risk pattern"),
                }
        return patterns_by_level

    def register_checker(self, tool_name: str, checker: Callable[[dict], ApprovalDecision]):
        """注册工具自定义检测函数"""
        self.custom_checkers[tool_name] = checker

    def check(self, tool_name: str, args: dict) -> ApprovalDecision:
        """Decide whether ``tool_name(args)`` needs a human decision."""
        if tool_name in self.custom_checkers:
            return self.custom_checkers[tool_name](args)

        global_decision = self._check_global_patterns(args)
        if global_decision.needs_approval:
            return global_decision

        if tool_name in self.rules.get("tools", {}):
            decision = self._check_config_rules(tool_name, args)
            if decision.needs_approval:
                return decision

        return self._check_builtin_rules(tool_name, args)

    def is_read_only(self, tool_name: str) -> bool:
        configured = self.rules.get("read_only_tools")
        if configured:
            return tool_name in configured
        return tool_name in READ_ONLY_TOOLS

    def _check_global_patterns(self, args: dict) -> ApprovalDecision:
        if not self.global_patterns:
            return ApprovalDecision(needs_approval=False)

        args_str = _args_text(args)
        for risk_level in RISK_LEVELS_ORDER:
            pattern_config = self.global_patterns.get(risk_level)
            if not pattern_config or pattern_config["action"] != "require_approval":
                continue
            for pattern in pattern_config["patterns"]:
                if re.search(pattern, args_str, re.IGNORECASE):
                    return ApprovalDecision(
                        needs_approval=True,
                        reason=pattern_config["reason"],
                        risk_level=risk_level,
                    )
        return ApprovalDecision(needs_approval=False)

    def _check_config_rules(self, tool_name: str, args: dict) -> ApprovalDecision:
        tool_config = self.rules["tools"][tool_name] or {}
        if not tool_config.get("enabled", True):
            return ApprovalDecision(needs_approval=False)

        if tool_config.get("always_require_approval"):
            return ApprovalDecision(
                needs_approval=True,
                reason=f"{tool_name} always requires approval",
                risk_level=tool_config.get("risk_level", "medium"),
            )

        args_str = _args_text(args)
        for risk_level, pattern_list in tool_config.get("patterns", {}).items():
            for pattern in pattern_list:
                if re.search(pattern, args_str, re.IGNORECASE):
                    action = tool_config.get("actions", {}).get(risk_level, "require_approval")
                    if action == "require_approval":
                        return ApprovalDecision(
                            needs_approval=True,
                            reason=f"Matches {risk_level} risk pattern: {pattern}",
                            risk_level=risk_level,
                        )
        return ApprovalDecision(needs_approval=False)

    def _check_builtin_rules(self, tool_name: str, args: dict) -> ApprovalDecision:
        if tool_name in ("run_bash_command", "terminal", "shell"):
            return self._check_shell_command(args.get("command", ""))
        if tool_name in ("write_file", "edit_file", "delete_file"):
            return ApprovalDecision(
                needs_approval=True,
                reason=f"{tool_name} modifies {args.get('path', 'the workspace')}",
                risk_level="medium",
            )
        if tool_name == "http_fetch":
            return self._check_http_fetch(args.get("url", ""))
        return ApprovalDecision(needs_approval=False)

    def _check_shell_command(self, command: str) -> ApprovalDecision:
        high_risk_patterns = [
            r"\brm\s+-rf\b",
            r"\bsudo\b",
            r"\bchmod\s+777\b",
            r"\bmkfs\b",
            r"\bdd\b.*\bif=/dev/",
            r"\bgit\s+push\b.*--force",
            r"\bgit\s+reset\s+--hard\b",
        ]
        for pattern in high_risk_patterns:
            if re.search(pattern, command, re.IGNORECASE):
                return ApprovalDecision(needs_approval=True, reason="High-risk shell command", risk_level="high")

        medium_risk_patterns = [
            r"\bcurl\b",
            r"\bwget\b",
            r"\bgit\s+clone\b",
            r"\bpip\s+install\b",
            r"\bnpm\s+install\b",
        ]
        for pattern in medium_risk_patterns:
            if re.search(pattern, command, re.IGNORECASE):
                return ApprovalDecision(needs_approval=True, reason="Network or install command", risk_level="medium")

        return ApprovalDecision(needs_approval=False)

    def _check_http_fetch(self, url: str) -> ApprovalDecision:
        local_patterns = [
            r"localhost",
            r"127\.0\.0\.1",
            r"192\.168\.",
            r"\b10\.",
            r"172\.(1[6-9]|2[0-9]|3[0-1])\.",
        ]
        for pattern in local_patterns:
            if re.search(pattern, url, re.IGNORECASE):
                return ApprovalDecision(needs_approval=True, reason="Local or private network address", risk_level="medium")
        return ApprovalDecision(needs_approval=False)


def _args_text(args: dict) -> str:
    return " ".join(str(v) for v in args.values())
