from orchestrator.proctoring.directives import Directive, DirectiveQueue
from orchestrator.proctoring.monitor import ProctoringMonitor, ProctorWarning, warning_level

__all__ = ["Directive", "DirectiveQueue", "ProctorWarning", "ProctoringMonitor", "warning_level"]
