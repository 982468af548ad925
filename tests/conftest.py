from __future__ import annotations

from decimal import Decimal

import pytest
from flask import g
from flask.testing import FlaskClient

from config import TestingConfig
from vendor_billing import create_app
from vendor_billing.enums import JobStatus, RoleName
from vendor_billing.extensions import db as _db
from vendor_billing.models import Job, JobItem, Role, User, VatConfig, Vendor
from vendor_billing.security import Actor
from vendor_billing.seed import seed_roles
from vendor_billing.session import encode_token


class PerRequestUserClient(FlaskClient):
    """
    The app context stays pushed for the whole test, so requests share `g`.
    Drop the per-request user caches so every call authenticates on its own.
    """

    def open(self, *args, **kwargs):
        g.pop("_login_user", None)
        g.pop("actor", None)
        return super().open(*args, **kwargs)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    app.test_client_class = PerRequestUserClient
    with app.app_context():
        _db.create_all()
        seed_roles()
        _db.session.commit()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


def _make_user(email: str, role: RoleName, vendor: Vendor | None = None) -> User:
    user = User(
        email=email,
        name=email.split("@")[0],
        role=Role.query.filter_by(name=role.value).first(),
        vendor=vendor,
        is_active=True,
    )
    user.set_password("secret123")
    _db.session.add(user)
    return user


@pytest.fixture
def world(db):
    """Two vendors, one admin, a vendor user per vendor, a read-only user and an unattached vendor user."""
    vendor_a = Vendor(company_name="Alpha Logistics", tax_id="1111111111111")
    vendor_a.vat_config = VatConfig(vat_rate=Decimal("7"), wht_rate=Decimal("3"), calculate_before_vat=False)
    vendor_b = Vendor(company_name="Beta Shipping", tax_id="2222222222222")
    db.session.add_all([vendor_a, vendor_b])
    db.session.flush()

    users = {
        "admin": _make_user("admin@example.com", RoleName.ADMIN),
        "vendor_a_user": _make_user("vendor.a@example.com", RoleName.VENDOR, vendor_a),
        "vendor_b_user": _make_user("vendor.b@example.com", RoleName.VENDOR, vendor_b),
        "user_a": _make_user("user.a@example.com", RoleName.USER, vendor_a),
        "loose_vendor": _make_user("new.vendor@example.com", RoleName.VENDOR),
    }
    db.session.commit()

    class World:
        pass

    w = World()
    w.vendor_a = vendor_a
    w.vendor_b = vendor_b
    for key, user in users.items():
        setattr(w, key, user)
    return w


@pytest.fixture
def actor():
    def _actor(user: User) -> Actor:
        return Actor.from_user(user)

    return _actor


@pytest.fixture
def auth():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {encode_token(user)}"}

    return _headers


@pytest.fixture
def make_job(db):
    def _make_job(vendor: Vendor, *amounts, description: str = "Customs clearance") -> Job:
        job = Job(vendor_id=vendor.id, description=description, status=JobStatus.PENDING)
        job.items = [
            JobItem(description=f"Item {i + 1}", amount=Decimal(str(amount)))
            for i, amount in enumerate(amounts or ("107.00",))
        ]
        db.session.add(job)
        db.session.commit()
        return job

    return _make_job
