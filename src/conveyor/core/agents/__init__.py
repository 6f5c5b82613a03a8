# src/conveyor/core/agents/__init__.py
"""Agentes de execução: labels, workspaces isolados e slots de executor."""

from .pool import DEFAULT_AGENT_NAME, Agent, AgentPool

__all__ = ["Agent", "AgentPool", "DEFAULT_AGENT_NAME"]
