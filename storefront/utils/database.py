# storefront/utils/database.py

from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.future import select
from storefront.config import settings
from storefront.utils.security import hash_password

# ────────────── Base for models ──────────────
Base = declarative_base()

# ────────────── Database URL ──────────────
SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL

# ────────────── Async engine ──────────────
engine = create_async_engine(
    SQLALCHEMY_DATABASE_URL,
    echo=False  # True to print SQL while debugging
)

# ────────────── Async session ──────────────
AsyncSessionLocal = sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# ────────────── Database init ──────────────
async def init_db(bind=None, session_factory=None):
    """
    Creates all tables (if missing) and makes sure a merchant admin exists.
        - When there is no admin, one is created from AUTH_LOGIN / AUTH_PASSWORD
        - The password is stored hashed
    """
    bind = bind or engine
    session_factory = session_factory or AsyncSessionLocal

    # models must be imported so their tables are registered on Base.metadata
    from storefront.models import catalog, merchant, order, transaction  # noqa: F401
    from storefront.models.merchant import Merchant

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with session_factory() as session:
        result = await session.execute(select(Merchant).where(Merchant.is_admin.is_(True)))
        if result.scalars().first() is None:
            admin = Merchant(
                name="Administrator",
                login=settings.AUTH_LOGIN,
                password=hash_password(settings.AUTH_PASSWORD),
                is_admin=True
            )
            session.add(admin)
            await session.commit()


def utcnow() -> datetime:
    """Naive UTC timestamp, stored the same way by Postgres and SQLite."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
