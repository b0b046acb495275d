"""Link lifecycle: click, completion, vendor correction and manual review."""

from .manager import (
    QC_EXCLUDED,
    ClickOutcome,
    CompletionOutcome,
    LinkLifecycleManager,
)

__all__ = [
    "QC_EXCLUDED",
    "ClickOutcome",
    "CompletionOutcome",
    "LinkLifecycleManager",
]
