from defense_eval.models.audit_event import AuditEvent
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.evaluation_score import EvaluationScore
from defense_eval.models.rbac import Role, UserRole
from defense_eval.models.rubric_criterion import RubricCriterion
from defense_eval.models.rubric_template import RubricTemplate
from defense_eval.models.schedule_panelist import SchedulePanelist
from defense_eval.models.student_evaluation import StudentEvaluation
from defense_eval.models.thesis_group import GroupMember, ThesisGroup
from defense_eval.models.user import User

__all__ = [ "AuditEvent", "DefenseSchedule", "Evaluation",
           "EvaluationScore", "Role", "UserRole", "RubricCriterion",
           "RubricTemplate", "SchedulePanelist", "StudentEvaluation", "GroupMember",
           "ThesisGroup", "User" ]
