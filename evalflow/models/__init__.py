"""Database models."""

from evalflow.models.user import User
from evalflow.models.evaluation import AssignmentRow, EvaluationRow

__all__ = ["User", "EvaluationRow", "AssignmentRow"]
