from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.evaluation import Evaluation
from defense_eval.models.evaluation_score import EvaluationScore
from defense_eval.models.rbac import Role, UserRole
from defense_eval.models.rubric_criterion import RubricCriterion
from defense_eval.models.rubric_template import RubricTemplate
from defense_eval.models.schedule_panelist import SchedulePanelist
from defense_eval.models.thesis_group import GroupMember, ThesisGroup
from defense_eval.models.user import User


def as_user(user_or_email) -> dict:
    email = user_or_email if isinstance(user_or_email, str) else user_or_email.email
    return {"X-User-Email": email}


def ensure_role(db, name: str) -> Role:
    r = db.query(Role).filter(Role.name == name).one_or_none()
    if r:
        return r
    r = Role(name=name)
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


def create_user(db, email: str, name="User", *roles: str) -> User:
    u = User(email=email.lower(), name=name, is_active=True)
    db.add(u)
    db.commit()
    db.refresh(u)
    for role in roles:
        grant_role(db, u, role)
    return u


def grant_role(db, user: User, role_name: str):
    role = ensure_role(db, role_name)
    exists = db.query(UserRole).filter(UserRole.user_id == user.id, UserRole.role_id == role.id).one_or_none()
    if not exists:
        db.add(UserRole(user_id=user.id, role_id=role.id))
        db.commit()


def create_group(db: Session, title="Group A", members: list[User] | None = None) -> ThesisGroup:
    g = ThesisGroup(title=title)
    g.members = [GroupMember(student_id=m.id) for m in (members or [])]
    db.add(g)
    db.commit()
    db.refresh(g)
    return g


def create_schedule(
    db: Session,
    group: ThesisGroup,
    *,
    template: RubricTemplate | None = None,
    scheduled_at: datetime | None = None,
) -> DefenseSchedule:
    s = DefenseSchedule(
        group_id=group.id,
        scheduled_at=scheduled_at or datetime.utcnow() + timedelta(days=1),
        status="scheduled",
        rubric_template_id=template.id if template else None,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


def assign_panelist(db: Session, schedule: DefenseSchedule, staff: User) -> SchedulePanelist:
    p = SchedulePanelist(schedule_id=schedule.id, staff_id=staff.id)
    db.add(p)
    db.commit()
    return p


def create_template(db: Session, *, name="Defense Rubric", version=1, active=True) -> RubricTemplate:
    now = datetime.utcnow()
    t = RubricTemplate(name=name, version=version, active=active, created_at=now, updated_at=now)
    db.add(t)
    db.commit()
    db.refresh(t)
    return t


def create_criterion(
    db: Session,
    template: RubricTemplate,
    *,
    name="Criterion",
    weight=1,
    min_score=1,
    max_score=5,
) -> RubricCriterion:
    c = RubricCriterion(
        template_id=template.id,
        name=name,
        weight=weight,
        min_score=min_score,
        max_score=max_score,
        created_at=datetime.utcnow(),
    )
    db.add(c)
    db.commit()
    db.refresh(c)
    return c


def create_evaluation(db: Session, schedule: DefenseSchedule, evaluator: User, status="pending") -> Evaluation:
    now = datetime.utcnow()
    e = Evaluation(
        schedule_id=schedule.id,
        evaluator_id=evaluator.id,
        status=status,
        submitted_at=now if status == "submitted" else None,
        locked_at=now if status == "locked" else None,
    )
    db.add(e)
    db.commit()
    db.refresh(e)
    return e


def create_score(db: Session, evaluation: Evaluation, criterion: RubricCriterion, subject_type, subject_id, score):
    row = EvaluationScore(
        evaluation_id=evaluation.id,
        criterion_id=criterion.id,
        subject_type=subject_type,
        subject_id=subject_id,
        score=score,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def defense_setup(db: Session, *, students=2, weights=(40, 60)):
    """
    admin, one staff evaluator, a group with ``students`` members, an active
    template with one 1..5 criterion per weight, a schedule with the staff
    member on its panel, and a pending evaluation owned by them.
    """
    admin = create_user(db, "admin@local.test", "Admin", "admin")
    staff = create_user(db, "staff@local.test", "Staff", "staff")
    members = [
        create_user(db, f"student{i}@local.test", f"Student {i}", "student") for i in range(1, students + 1)
    ]
    group = create_group(db, members=members)
    template = create_template(db, version=2)
    criteria = [create_criterion(db, template, name=f"C{i}", weight=w) for i, w in enumerate(weights, start=1)]
    schedule = create_schedule(db, group)
    assign_panelist(db, schedule, staff)
    evaluation = create_evaluation(db, schedule, staff)
    return {
        "admin": admin,
        "staff": staff,
        "students": members,
        "group": group,
        "template": template,
        "criteria": criteria,
        "schedule": schedule,
        "evaluation": evaluation,
    }
