from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from utils.db_utils import get_database_url_and_connect_args

# Table modules must be imported so their metadata is registered.
from models.sql.gift_code import GiftCodeModel  # noqa: F401
from models.sql.invoice import InvoiceModel  # noqa: F401
from models.sql.magic_link import MagicLinkModel  # noqa: F401
from models.sql.merchant import MerchantModel  # noqa: F401
from models.sql.partner import PartnerModel  # noqa: F401
from models.sql.setting import SettingModel  # noqa: F401
from models.sql.sku import SkuModel  # noqa: F401
from models.sql.transaction import TransactionModel  # noqa: F401
from models.sql.user import UserModel  # noqa: F401


database_url, connect_args = get_database_url_and_connect_args()

engine_kwargs = {"connect_args": connect_args}
if database_url.startswith("sqlite"):
    # aiosqlite connections are bound to the loop that opened them.
    engine_kwargs["poolclass"] = NullPool
else:
    engine_kwargs["pool_pre_ping"] = True

sql_engine = create_async_engine(database_url, **engine_kwargs)
async_session_maker = async_sessionmaker(sql_engine, expire_on_commit=False)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_maker() as session:
        yield session


async def create_db_and_tables():
    async with sql_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def drop_db_and_tables():
    async with sql_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
