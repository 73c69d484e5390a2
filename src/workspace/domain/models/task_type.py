from enum import Enum


class TaskKind(str, Enum):
    GENERAL = "general"
    REPORT = "report"
    ANALYSIS = "analysis"
