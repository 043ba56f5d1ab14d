from pydantic import AliasChoices

# canonical field -> every spelling accepted on the wire (canonical first)
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "evaluation_id": ("evaluation_id", "evaluationId", "eval_id", "evalId"),
    "criterion_id": (
        "criterion_id",
        "criterionId",
        "criteria_id",
        "criteriaId",
        "rubric_criterion_id",
        "rubricCriterionId",
    ),
    "subject_type": ("subject_type", "subjectType", "target_type", "targetType"),
    "subject_id": ("subject_id", "subjectId", "target_id", "targetId"),
    "student_id": ("student_id", "studentId"),
    "group_id": ("group_id", "groupId"),
    "score": ("score", "value"),
    "template_id": ("template_id", "templateId"),
    "min_score": ("min_score", "minScore"),
    "max_score": ("max_score", "maxScore"),
    "schedule_id": ("schedule_id", "scheduleId"),
    "evaluator_id": ("evaluator_id", "evaluatorId"),
    "scheduled_at": ("scheduled_at", "scheduledAt"),
    "rubric_template_id": ("rubric_template_id", "rubricTemplateId"),
    "adviser_id": ("adviser_id", "adviserId"),
    "member_ids": ("member_ids", "memberIds", "members"),
    "staff_ids": ("staff_ids", "staffIds", "panelist_ids", "panelistIds", "panelists"),
    "create_evaluations": ("create_evaluations", "createEvaluations"),
    "scores": ("scores", "items"),
    "criterion_name": ("name", "criterion"),
}

SUBJECT_TYPE_VALUES = {
    "group": "group",
    "student": "student",
    "individual": "student",
}


def accepts(field: str) -> AliasChoices:
    return AliasChoices(*FIELD_ALIASES[field])
