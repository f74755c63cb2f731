import uuid
from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from tradieapp.auth.tokens import create_mobile_token
from tradieapp.db import Database
from tradieapp.main import create_app
from tradieapp.models.models import Client, Invoice, Organization, OrganizationMember, User
from tradieapp.services.numbering import generate_public_token
from tradieapp.services.payment_links import get_payment_client_factory
from tradieapp.services.time_rules import utcnow


@pytest.fixture
def database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'test.db'}")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def session(database):
    s = database.session()
    yield s
    s.close()


@pytest.fixture
def app(database):
    return create_app(database=database)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


class RecordingStripe:
    """Stands in for the Stripe client and remembers every link it was asked for."""

    def __init__(self):
        self.created = []

    def _link(self, kind, amount):
        self.created.append((kind, amount))
        return {"id": f"plink_{len(self.created)}", "url": f"https://pay.example.com/{len(self.created)}"}

    def create_deposit_link(self, quote, amount):
        return self._link("deposit", amount)

    def create_invoice_payment_link(self, invoice, amount):
        return self._link("invoice", amount)


@pytest.fixture
def stripe(app):
    recorder = RecordingStripe()
    app.dependency_overrides[get_payment_client_factory] = lambda: (lambda: recorder)
    return recorder


def _user(session, name: str) -> User:
    user = User(
        external_identity_id=f"idp_{name}_{uuid.uuid4().hex[:8]}",
        email=f"{name}@example.com",
        full_name=name.title(),
    )
    session.add(user)
    session.flush()
    return user


def _member(session, org: Organization, user: User, role: str, status: str = "active", **flags) -> OrganizationMember:
    member = OrganizationMember(
        organization_id=org.id,
        user_id=user.id,
        role=role,
        status=status,
        joined_at=utcnow(),
        **flags,
    )
    session.add(member)
    session.flush()
    return member


@pytest.fixture
def world(session):
    """Two tenants.

    Acme: alice (owner), adam (admin), bob (employee, no flags),
    carol (employee, can_create_invoices), dave (suspended, every flag).
    Rival: erin (owner).
    """
    acme = Organization(name="Acme Plumbing")
    rival = Organization(name="Rival Electrical")
    session.add_all([acme, rival])
    session.flush()

    users = {name: _user(session, name) for name in ("alice", "adam", "bob", "carol", "dave", "erin")}
    acme.owner_id = users["alice"].id
    rival.owner_id = users["erin"].id

    every_flag = dict(
        can_create_jobs=True,
        can_edit_all_jobs=True,
        can_create_invoices=True,
        can_view_financials=True,
        can_approve_expenses=True,
        can_approve_timesheets=True,
    )
    members = {
        "alice": _member(session, acme, users["alice"], "owner"),
        "adam": _member(session, acme, users["adam"], "admin"),
        "bob": _member(session, acme, users["bob"], "employee"),
        "carol": _member(session, acme, users["carol"], "employee", can_create_invoices=True),
        "dave": _member(session, acme, users["dave"], "subcontractor", status="suspended", **every_flag),
        "erin": _member(session, rival, users["erin"], "owner"),
    }

    acme_client = Client(organization_id=acme.id, first_name="Pat", last_name="Customer", email="pat@example.com")
    rival_client = Client(organization_id=rival.id, is_company=True, company_name="Other Co")
    session.add_all([acme_client, rival_client])
    session.commit()

    tokens = {
        name: create_mobile_token(u.id, u.external_identity_id, u.email)
        for name, u in users.items()
    }
    return SimpleNamespace(
        acme_id=acme.id,
        rival_id=rival.id,
        user_ids={name: u.id for name, u in users.items()},
        member_ids={name: m.id for name, m in members.items()},
        external_ids={name: u.external_identity_id for name, u in users.items()},
        acme_client_id=acme_client.id,
        rival_client_id=rival_client.id,
        tokens=tokens,
    )


@pytest.fixture
def auth(world):
    def _headers(name: str) -> dict:
        return {"Authorization": f"Bearer {world.tokens[name]}"}

    return _headers


@pytest.fixture
def make_invoice(session, world):
    counter = iter(range(1, 1000))

    def _make(total="500.00", due_in_days=14, sent=False, organization_id=None, client_id=None) -> Invoice:
        now = utcnow()
        total = Decimal(total)
        invoice = Invoice(
            organization_id=organization_id or world.acme_id,
            client_id=client_id or world.acme_client_id,
            created_by_user_id=world.user_ids["alice"],
            invoice_number=f"INV-TEST-{next(counter):03d}",
            public_token=generate_public_token(),
            status="sent" if sent else "draft",
            subtotal=total,
            gst_amount=Decimal("0.00"),
            total_amount=total,
            paid_amount=Decimal("0.00"),
            issue_date=now,
            due_date=now + timedelta(days=due_in_days),
            sent_at=now if sent else None,
        )
        session.add(invoice)
        session.commit()
        return invoice

    return _make
