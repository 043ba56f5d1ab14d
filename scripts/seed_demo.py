from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from defense_eval.core.rbac import ADMIN, PANELIST, STAFF, STUDENT
from defense_eval.db.session import SessionLocal
from defense_eval.models.defense_schedule import DefenseSchedule
from defense_eval.models.rbac import Role, UserRole
from defense_eval.models.rubric_criterion import RubricCriterion
from defense_eval.models.rubric_template import RubricTemplate
from defense_eval.models.schedule_panelist import SchedulePanelist
from defense_eval.models.thesis_group import GroupMember, ThesisGroup
from defense_eval.models.user import User

DEMO_CRITERIA = [
    # name, weight, min, max
    ("Problem statement and objectives", 20, 1, 5),
    ("Methodology", 30, 1, 5),
    ("Results and discussion", 30, 1, 5),
    ("Presentation and defense", 20, 1, 5),
]


def get_or_create_user(db: Session, email: str, name: str) -> User:
    u = db.query(User).filter(User.email == email).one_or_none()
    if u:
        return u
    u = User(email=email, name=name, is_active=True)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def get_or_create_role(db: Session, name: str) -> Role:
    r = db.query(Role).filter(Role.name == name).one_or_none()
    if r:
        return r
    r = Role(name=name)
    db.add(r)
    db.commit()
    db.refresh(r)
    return r


def ensure_user_role(db: Session, user_id, role_id):
    ur = (
        db.query(UserRole)
        .filter(UserRole.user_id == user_id, UserRole.role_id == role_id)
        .one_or_none()
    )
    if ur:
        return ur
    ur = UserRole(user_id=user_id, role_id=role_id)
    db.add(ur)
    db.commit()
    db.refresh(ur)
    return ur


def get_or_create_template(db: Session, name: str, version: int) -> RubricTemplate:
    t = (
        db.query(RubricTemplate)
        .filter(RubricTemplate.name == name, RubricTemplate.version == version)
        .one_or_none()
    )
    if t:
        return t
    t = RubricTemplate(name=name, version=version, active=True, description="Default oral defense rubric")
    db.add(t)
    db.flush()
    for crit_name, weight, lo, hi in DEMO_CRITERIA:
        db.add(RubricCriterion(template_id=t.id, name=crit_name, weight=weight, min_score=lo, max_score=hi))
    db.commit()
    db.refresh(t)
    return t


def get_or_create_group(db: Session, title: str, adviser: User, students: list[User]) -> ThesisGroup:
    g = db.query(ThesisGroup).filter(ThesisGroup.title == title).one_or_none()
    if g:
        return g
    g = ThesisGroup(title=title, adviser_id=adviser.id, program="BS Computer Science", term="2026-1")
    g.members = [GroupMember(student_id=s.id) for s in students]
    db.add(g)
    db.commit()
    db.refresh(g)
    return g


def get_or_create_schedule(db: Session, group: ThesisGroup, created_by: User) -> DefenseSchedule:
    s = db.query(DefenseSchedule).filter(DefenseSchedule.group_id == group.id).first()
    if s:
        return s
    s = DefenseSchedule(
        group_id=group.id,
        scheduled_at=datetime.utcnow() + timedelta(days=7),
        room="Room 301",
        status="scheduled",
        created_by=created_by.id,
    )
    db.add(s)
    db.commit()
    db.refresh(s)
    return s


def ensure_panelist(db: Session, schedule: DefenseSchedule, staff: User) -> SchedulePanelist:
    p = db.get(SchedulePanelist, (schedule.id, staff.id))
    if p:
        return p
    p = SchedulePanelist(schedule_id=schedule.id, staff_id=staff.id)
    db.add(p)
    db.commit()
    return p


def main():
    db = SessionLocal()
    try:
        # ---- Roles ----
        roles = {name: get_or_create_role(db, name) for name in (ADMIN, STAFF, PANELIST, STUDENT)}

        # ---- Users ----
        admin_user = get_or_create_user(db, "admin@local.test", "Admin Local")
        staff_user = get_or_create_user(db, "staff@local.test", "Prof. Staff Local")
        panelist_user = get_or_create_user(db, "panelist@local.test", "Panelist Local")
        students = [
            get_or_create_user(db, "student1@local.test", "Student One"),
            get_or_create_user(db, "student2@local.test", "Student Two"),
        ]

        ensure_user_role(db, admin_user.id, roles[ADMIN].id)
        ensure_user_role(db, staff_user.id, roles[STAFF].id)
        ensure_user_role(db, panelist_user.id, roles[PANELIST].id)
        for s in students:
            ensure_user_role(db, s.id, roles[STUDENT].id)

        # ---- Rubric / group / schedule ----
        template = get_or_create_template(db, "Thesis Oral Defense", 1)
        group = get_or_create_group(db, "Demo Thesis Group", staff_user, students)
        schedule = get_or_create_schedule(db, group, admin_user)
        for member in (staff_user, panelist_user):
            ensure_panelist(db, schedule, member)

        print("\n=== Demo Seed Complete ===")
        print("Users (use as X-User-Email header):")
        print(f"  admin:    {admin_user.email}")
        print(f"  staff:    {staff_user.email}")
        print(f"  panelist: {panelist_user.email}")
        for s in students:
            print(f"  student:  {s.email}")

        print("\nRubric:")
        print(f"  template_id: {template.id}  ({len(template.criteria)} criteria)")
        print(f"\nGroup:    {group.id}")
        print(f"Schedule: {schedule.id}  (panel: {staff_user.email}, {panelist_user.email})")

        print("\nNext actions:")
        print("  1) (Staff) Create/get evaluation: POST /evaluations {\"schedule_id\": ...}")
        print("  2) (Staff) Score: POST /evaluations/{evaluation_id}/scores/bulk")
        print("  3) (Staff) Review: GET /evaluations/{evaluation_id}/summary")
        print("  4) (Staff) Submit: POST /evaluations/{evaluation_id}/submit")
        print("  5) (Admin) Rankings: GET /rankings?target=group")
        print()

    finally:
        db.close()


if __name__ == "__main__":
    main()
