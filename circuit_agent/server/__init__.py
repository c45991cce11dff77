from __future__ import annotations

from .agent import STATUS_TOOL, AgentServer
from .children import TerminationReport, terminate_descendants

__all__ = ["AgentServer", "STATUS_TOOL", "TerminationReport", "terminate_descendants"]
