import os
import tempfile

# Configure the environment before any application module reads it.
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="impact-ledger-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DATA_DIR, 'test.db')}"
os.environ["APP_DATA_DIRECTORY"] = _TEST_DATA_DIR
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["EXPOSE_MAGIC_LINKS"] = "true"
os.environ.pop("ENVIRONMENT", None)
os.environ.pop("CORSAIR_ID_PREFIX", None)

import pytest
from fastapi.testclient import TestClient

from models.enums import PaymentMode, UserRole
from models.sql.merchant import MerchantModel
from models.sql.sku import SkuModel
from models.sql.user import UserModel
from services.auth_service import create_access_token
from services.database import async_session_maker, create_db_and_tables, drop_db_and_tables
from services.settings_service import ensure_default_settings


@pytest.fixture(autouse=True)
async def reset_database():
    await drop_db_and_tables()
    await create_db_and_tables()
    async with async_session_maker() as sql_session:
        await ensure_default_settings(sql_session)


@pytest.fixture
async def sql_session():
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def client():
    from api.main import app

    with TestClient(app) as test_client:
        yield test_client


async def add_rows(*instances):
    async with async_session_maker() as sql_session:
        for instance in instances:
            sql_session.add(instance)
        await sql_session.commit()
        for instance in instances:
            await sql_session.refresh(instance)
    return instances


async def user_with_token(email: str, role: UserRole = UserRole.USER, **fields) -> tuple[UserModel, str]:
    (user,) = await add_rows(UserModel(email=email, role=role.value, **fields))
    return user, create_access_token(user)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def admin_headers():
    _, token = await user_with_token("admin@csr26.it", UserRole.ADMIN)
    return bearer(token)


@pytest.fixture
async def merchant():
    (row,) = await add_rows(MerchantModel(name="Ocean Foods", email="billing@oceanfoods.example"))
    return row


@pytest.fixture
async def claim_sku(merchant):
    (row,) = await add_rows(
        SkuModel(
            code="OCEAN-CLAIM",
            name="Ocean claim",
            payment_mode=PaymentMode.CLAIM.value,
            price=1.1,
            merchant_id=merchant.id,
        )
    )
    return row


@pytest.fixture
async def gift_sku():
    (row,) = await add_rows(
        SkuModel(
            code="GIFT-25",
            name="Gift card 25",
            payment_mode=PaymentMode.GIFT_CARD.value,
            price=25.0,
            validation_required=True,
        )
    )
    return row
