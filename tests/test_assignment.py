from chillconnect.models.user import UserRole
from chillconnect.models.verification import Assignment, AssignmentType, Verification, VerificationStatus
from chillconnect.services import assignment


def _verification(db, user):
    v = Verification(user_id=user.id)
    db.add(v)
    db.flush()
    return v


def test_no_staff_leaves_item_unassigned(db, make_user):
    provider = make_user(UserRole.PROVIDER, verified=False)
    v = _verification(db, provider)
    assert assignment.assign_verification(db, v) is None
    assert v.employee_id is None
    assert db.query(Assignment).count() == 0


def test_round_robin_wraps(db, make_user):
    staff = [make_user(UserRole.EMPLOYEE), make_user(UserRole.MANAGER)]
    picks = [assignment.next_employee(db, AssignmentType.VERIFICATION).id for _ in range(3)]
    assert picks == [staff[0].id, staff[1].id, staff[0].id]


def test_queues_rotate_independently(db, make_user):
    first = make_user(UserRole.EMPLOYEE)
    make_user(UserRole.EMPLOYEE)
    assignment.next_employee(db, AssignmentType.VERIFICATION)
    assert assignment.next_employee(db, AssignmentType.DISPUTE).id == first.id


def test_suspended_and_super_admin_skipped(db, make_user):
    make_user(UserRole.SUPER_ADMIN)
    suspended = make_user(UserRole.EMPLOYEE)
    suspended.is_suspended = True
    active = make_user(UserRole.EMPLOYEE)
    db.commit()
    for _ in range(2):
        assert assignment.next_employee(db, AssignmentType.BOOKING_MONITORING).id == active.id


def test_assign_verification_creates_assignment(db, make_user):
    employee = make_user(UserRole.EMPLOYEE)
    provider = make_user(UserRole.PROVIDER, verified=False)
    v = _verification(db, provider)

    assert assignment.assign_verification(db, v).id == employee.id
    assert v.status == VerificationStatus.IN_PROGRESS
    active = db.query(Assignment).filter(Assignment.is_active.is_(True)).one()
    assert (active.employee_id, active.item_id, active.item_type) == (employee.id, v.id, AssignmentType.VERIFICATION)


def test_reassign_moves_item(db, make_user):
    first = make_user(UserRole.EMPLOYEE)
    second = make_user(UserRole.EMPLOYEE)
    provider = make_user(UserRole.PROVIDER, verified=False)
    v = _verification(db, provider)
    assignment.assign_verification(db, v)
    current = db.query(Assignment).one()
    assert current.employee_id == first.id

    replacement = assignment.reassign(db, current, second)
    assert not current.is_active
    assert replacement.is_active and replacement.employee_id == second.id
    assert v.employee_id == second.id
