"""
Shared fixtures: in-memory SQLite session, row factories and a canned oracle.
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.pop("REDIS_URL", None)
os.environ.pop("DATABASE_URL", None)

import json  # noqa: E402
from datetime import datetime  # noqa: E402
from itertools import count  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base  # noqa: E402
from app.exceptions import OracleError  # noqa: E402
from app.models import (  # noqa: E402
    GlobalPartner,
    NoReceiptCategory,
    Partner,
    ReceiptFile,
    Transaction,
    UserProfile,
)

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


_ids = count(1)


def _next_id(prefix: str) -> str:
    return f"{prefix}{next(_ids):05d}"


@pytest.fixture
def make_partner(db):
    def factory(name="Amazon", user_id=USER_ID, **kwargs):
        partner = Partner(
            id=kwargs.pop("id", _next_id("p")),
            user_id=user_id,
            name=name,
            aliases=kwargs.pop("aliases", []),
            ibans=kwargs.pop("ibans", []),
            email_domains=kwargs.pop("email_domains", []),
            learned_patterns=kwargs.pop("learned_patterns", []),
            manual_removals=kwargs.pop("manual_removals", []),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db.add(partner)
        db.commit()
        return partner
    return factory


@pytest.fixture
def make_global_partner(db):
    def factory(name="PayPal", **kwargs):
        partner = GlobalPartner(
            id=kwargs.pop("id", _next_id("g")),
            name=name,
            aliases=kwargs.pop("aliases", []),
            ibans=kwargs.pop("ibans", []),
            email_domains=kwargs.pop("email_domains", []),
            patterns=kwargs.pop("patterns", []),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db.add(partner)
        db.commit()
        return partner
    return factory


@pytest.fixture
def make_transaction(db):
    def factory(name=None, partner=None, user_id=USER_ID, **kwargs):
        transaction = Transaction(
            id=kwargs.pop("id", _next_id("t")),
            user_id=user_id,
            date=kwargs.pop("date", datetime(2026, 3, 15, 12, 0)),
            amount=kwargs.pop("amount", -1999),
            currency=kwargs.pop("currency", "EUR"),
            name=name,
            partner=partner,
            partner_suggestions=kwargs.pop("partner_suggestions", []),
            file_ids=kwargs.pop("file_ids", []),
            category_suggestions=kwargs.pop("category_suggestions", []),
            **kwargs,
        )
        db.add(transaction)
        db.commit()
        return transaction
    return factory


@pytest.fixture
def make_file(db):
    def factory(user_id=USER_ID, **kwargs):
        receipt = ReceiptFile(
            id=kwargs.pop("id", _next_id("f")),
            user_id=user_id,
            extraction_complete=kwargs.pop("extraction_complete", True),
            partner_suggestions=kwargs.pop("partner_suggestions", []),
            transaction_ids=kwargs.pop("transaction_ids", []),
            transaction_suggestions=kwargs.pop("transaction_suggestions", []),
            **kwargs,
        )
        db.add(receipt)
        db.commit()
        return receipt
    return factory


@pytest.fixture
def make_category(db):
    def factory(template_id="bank-fees", user_id=USER_ID, **kwargs):
        category = NoReceiptCategory(
            id=kwargs.pop("id", _next_id("c")),
            user_id=user_id,
            template_id=template_id,
            name=kwargs.pop("name", template_id.replace("-", " ").title()),
            matched_partner_ids=kwargs.pop("matched_partner_ids", []),
            learned_patterns=kwargs.pop("learned_patterns", []),
            manual_removals=kwargs.pop("manual_removals", []),
            transaction_count=kwargs.pop("transaction_count", 0),
            is_active=kwargs.pop("is_active", True),
            **kwargs,
        )
        db.add(category)
        db.commit()
        return category
    return factory


@pytest.fixture
def make_profile(db):
    def factory(user_id=USER_ID, vat_ids=None, ibans=None, emails=None):
        profile = UserProfile(user_id=user_id, vat_ids=vat_ids or [], ibans=ibans or [], emails=emails or [])
        db.add(profile)
        db.commit()
        return profile
    return factory


class FakeOracle:
    """
    Canned completion oracle.

    Replies are consumed in order; a dict is returned as JSON, an
    OracleError instance is raised. The last reply repeats.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    def complete(self, system, prompt):
        self.prompts.append(prompt)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, OracleError):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply


@pytest.fixture
def fake_oracle():
    return FakeOracle
