import pytest

from marketplace.core.config import settings
from marketplace.core.exceptions import ForbiddenError, NotFoundError, UserInputError
from marketplace.models.notification import Notification
from marketplace.models.user import User, UserRole
from marketplace.services import user_service


def test_initialize_is_idempotent_and_normalizes_email(db):
    first = user_service.initialize_user(db, " Pharmacist@Example.com ")
    second = user_service.initialize_user(db, "pharmacist@example.com")
    assert first.id == second.id
    assert first.email == "pharmacist@example.com"
    assert first.role is None
    assert first.is_approved is False


def test_registration_waits_for_approval_and_alerts_admins(db, admin):
    user = user_service.initialize_user(db, "new@example.com")
    registered = user_service.complete_registration(
        db, user, UserRole.SUPPLIER.value, {"company_name": " Hawassa Medical ", "city": "Hawassa", "is_approved": True}
    )
    assert registered.role == UserRole.SUPPLIER.value
    assert registered.company_name == "Hawassa Medical"
    assert registered.profile_complete is True
    assert registered.is_approved is False

    alert = db.query(Notification).filter_by(user_id=admin.id, type="approval_request").one()
    assert alert.data["user_id"] == user.id
    assert [u.id for u in user_service.list_pending_approval(db)] == [user.id]


def test_registration_validation(db):
    user = user_service.initialize_user(db, "x@example.com")
    with pytest.raises(UserInputError, match="Invalid role"):
        user_service.complete_registration(db, user, "pharmacy", {"company_name": "X"})
    with pytest.raises(UserInputError, match="Company name"):
        user_service.complete_registration(db, user, UserRole.IMPORTER.value, {"company_name": " "})


def test_admin_role_cannot_be_self_assigned(db, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_EMAIL", "root@medlink.et")
    user = user_service.initialize_user(db, "someone@example.com")
    with pytest.raises(ForbiddenError):
        user_service.complete_registration(db, user, UserRole.ADMIN.value, {"company_name": "Me"})

    root = user_service.initialize_user(db, "root@medlink.et")
    registered = user_service.complete_registration(db, root, UserRole.ADMIN.value, {"company_name": "MedLink"})
    assert registered.is_admin is True
    assert registered.is_approved is True


def test_approve_and_reject(db, admin, make_user):
    pending = make_user(approved=False)
    with pytest.raises(ForbiddenError):
        user_service.approve_user(db, pending, pending.id)

    approved = user_service.approve_user(db, admin, pending.id)
    assert approved.is_approved is True
    assert approved.approved_by == admin.id

    with pytest.raises(UserInputError):
        user_service.reject_user(db, admin, pending.id, "")
    rejected = user_service.reject_user(db, admin, pending.id, "EFDA license expired")
    assert rejected.is_approved is False
    assert rejected.rejection_reason == "EFDA license expired"
    messages = [n.message for n in db.query(Notification).filter_by(user_id=pending.id).order_by(Notification.id)]
    assert messages == ["Your account has been approved", "Your registration was rejected: EFDA license expired"]


def test_search_and_roles(db, make_user, admin):
    mekelle = make_user(role=UserRole.IMPORTER.value, company_name="Mekelle Pharma", city="Mekelle")
    make_user(role=UserRole.SUPPLIER.value, company_name="Gondar Supplies")

    assert [u.id for u in user_service.search_users(db, "MEKELLE")] == [mekelle.id]
    assert user_service.search_users(db, "mekelle", exclude_user_id=mekelle.id) == []
    assert user_service.search_users(db, "  ") == []
    assert [u.id for u in user_service.list_by_role(db, UserRole.IMPORTER.value)] == [mekelle.id]
    with pytest.raises(UserInputError):
        user_service.list_by_role(db, "doctor")


def test_profile_update_ignores_protected_fields(db, buyer):
    updated = user_service.update_profile(db, buyer, {"phone": " +251911000000 ", "role": "admin", "is_approved": False})
    assert updated.phone == "+251911000000"
    assert updated.role == UserRole.SUPPLIER.value
    assert updated.is_approved is True


def test_delete_user(db, admin, make_user):
    doomed = make_user()
    assert user_service.delete_user(db, admin, doomed.id) is True
    assert db.get(User, doomed.id) is None
    with pytest.raises(NotFoundError):
        user_service.get_user(db, doomed.id)
