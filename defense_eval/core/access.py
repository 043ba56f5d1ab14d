from defense_eval.core.errors import Forbidden
from defense_eval.core.security import Actor
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.student_evaluation import StudentEvaluation


def is_evaluation_owner(actor: Actor, evaluation: Evaluation) -> bool:
    return actor.is_staff and evaluation.evaluator_id == actor.id


def assert_can_author_evaluation(actor: Actor, evaluation: Evaluation):
    """Admin, or the staff member the evaluation is assigned to."""
    if actor.is_admin:
        return
    if not is_evaluation_owner(actor, evaluation):
        raise Forbidden("Only the assigned evaluator can perform this action")


def assert_can_read_evaluation(actor: Actor, evaluation: Evaluation):
    if actor.is_admin or is_evaluation_owner(actor, evaluation):
        return
    raise Forbidden("Evaluation belongs to another evaluator")


def assert_can_access_student_evaluation(actor: Actor, row: StudentEvaluation):
    if actor.is_admin or actor.is_staff:
        return
    if actor.is_student and row.student_id == actor.id:
        return
    raise Forbidden("Students can only access their own evaluations")


def assert_can_write_student_evaluation(actor: Actor, row: StudentEvaluation):
    """Staff read student feedback but never edit it."""
    if actor.is_admin:
        return
    if actor.is_student and row.student_id == actor.id:
        return
    raise Forbidden("Only the student or an admin can change this evaluation")
