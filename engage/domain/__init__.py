"""Domain models and DTOs."""

from engage.domain.completion import CompletionRecord, CompletionStatus, EvaluationDecision, normalize_media_refs
from engage.domain.dispatch import DispatchLog, DispatchOutcome, DispatchStatus, DispatchTask, DispatchTaskCreate
from engage.domain.project import ChannelConnection, Organization, Project, ProjectSubscriber
from engage.domain.ranking import RankingAggregate
from engage.domain.template import DayTemplate, DayTemplateInput
from engage.domain.user import User, UserCreate


__all__ = [
    "ChannelConnection",
    "CompletionRecord",
    "CompletionStatus",
    "DayTemplate",
    "DayTemplateInput",
    "DispatchLog",
    "DispatchOutcome",
    "DispatchStatus",
    "DispatchTask",
    "DispatchTaskCreate",
    "EvaluationDecision",
    "Organization",
    "Project",
    "ProjectSubscriber",
    "RankingAggregate",
    "User",
    "UserCreate",
    "normalize_media_refs",
]
