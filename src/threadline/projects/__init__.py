"""Project classification and timeline assembly."""

from .classifier import ProjectClassifier, normalize_subject, safe_truncate
from .timeline import (
    MessageEvent,
    MilestoneEvent,
    ThreadEvent,
    TimelineAssembler,
    TimelineEvent,
    assemble_timeline,
)

__all__ = [
    "MessageEvent",
    "MilestoneEvent",
    "ProjectClassifier",
    "ThreadEvent",
    "TimelineAssembler",
    "TimelineEvent",
    "assemble_timeline",
    "normalize_subject",
    "safe_truncate",
]
