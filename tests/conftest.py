# tests/conftest.py

import os
import tempfile

# settings are read at import time
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="storefront-log-")
os.environ["LOG_PRINT"] = "0"
os.environ["AUTH_SECRET_KEY"] = "test-secret"
os.environ["AUTH_LOGIN"] = "admin"
os.environ["AUTH_PASSWORD"] = "admin-pass"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"

from itertools import count
from types import SimpleNamespace

import httpx
import pytest
import stripe
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.main import app
from storefront.models.catalog import Collection, Product
from storefront.utils.database import init_db
from storefront.utils.log import Log


SHIPPING_INFO = {
    "shipping_address": {"address": "1 Main St", "city": "Austin", "country": "US", "zip": "78701"},
    "contact_info": {"method": "email", "value": "ada@example.com", "firstName": "Ada", "lastName": "Lovelace"},
}


class FakeStripeGateway:
    """Records calls instead of talking to Stripe."""

    def __init__(self):
        self._ids = count(1)
        self.created = []
        self.metadata_updates = []
        self.fail_with = None
        self.drop_metadata = False
        self.charges = {}
        self.listed_charge = None
        self.event = None

    async def create_payment_intent(self, amount, metadata, currency="usd"):
        if self.fail_with is not None:
            raise self.fail_with
        n = next(self._ids)
        intent = SimpleNamespace(
            id=f"pi_test_{n}",
            client_secret=f"pi_test_{n}_secret_abc",
            amount=amount,
            metadata=dict(metadata),
            status="requires_payment_method",
            latest_charge=None,
        )
        self.created.append(intent)
        return intent

    async def retrieve_payment_intent(self, payment_intent_id):
        intent = next((i for i in self.created if i.id == payment_intent_id), None)
        if intent is not None and self.drop_metadata:
            return SimpleNamespace(id=intent.id, client_secret=intent.client_secret, metadata={}, status=intent.status)
        return intent

    async def update_payment_intent_metadata(self, payment_intent_id, metadata):
        self.metadata_updates.append((payment_intent_id, metadata))

    async def retrieve_charge(self, charge_id):
        return self.charges.get(charge_id)

    async def latest_charge_for(self, payment_intent_id):
        return self.listed_charge

    def construct_event(self, payload, signature):
        if signature != "valid":
            raise stripe.SignatureVerificationError("No signatures found matching the expected signature", signature)
        return self.event


class FakeSolanaRPC:
    """Transactions and token balances served from dicts."""

    url = "https://solana.test"

    def __init__(self):
        self.transactions = {}
        self.balances = {}

    async def get_transaction(self, signature):
        return self.transactions.get(signature)

    async def get_token_balance(self, owner, mint):
        return self.balances.get((owner, mint), 0.0)

    async def close(self):
        pass


def transfer_transaction(buyer, recipient, lamports, err=None):
    """getTransaction result of a plain SOL transfer paying the fee from the buyer."""
    return {
        "meta": {
            "err": err,
            "preBalances": [5_000_000_000, 1_000_000_000, 1],
            "postBalances": [5_000_000_000 - lamports - 5000, 1_000_000_000 + lamports, 1],
        },
        "transaction": {
            "message": {"accountKeys": [buyer, recipient, "11111111111111111111111111111111"]},
        },
    }


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest.fixture
async def session_factory(engine):
    factory = sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await init_db(bind=engine, session_factory=factory)
    return factory


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def log(tmp_path):
    log = Log(str(tmp_path / "log"))
    yield log
    await log.shutdown()


@pytest.fixture
def fake_stripe():
    return FakeStripeGateway()


@pytest.fixture
def fake_solana():
    return FakeSolanaRPC()


@pytest.fixture
async def client(session_factory, log, fake_stripe, fake_solana):
    app.state.session_factory = session_factory
    app.state.log = log
    app.state.stripe = fake_stripe
    app.state.solana = fake_solana
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def collection(db):
    collection = Collection(name="Genesis", slug="genesis", visible=True)
    db.add(collection)
    await db.commit()
    return collection


@pytest.fixture
async def product(db, collection):
    product = Product(
        collection_id=collection.id,
        name="Hoodie",
        price=40.0,
        variants=[{"id": "size", "name": "Size", "options": ["S", "M", "L"]}],
        variant_prices={"size:L": 45.0},
    )
    db.add(product)
    await db.commit()
    return product


@pytest.fixture
async def second_product(db, collection):
    product = Product(collection_id=collection.id, name="Cap", price=15.0)
    db.add(product)
    await db.commit()
    return product


@pytest.fixture
async def auth_headers(client):
    resp = await client.post("/auth/token", data={"username": "admin", "password": "admin-pass"})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}
