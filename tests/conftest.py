import pytest
import pytest_asyncio
from datetime import datetime, timedelta
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from storefront.main import app
from storefront.core.config import ReferralProgramConfig
from storefront.core.database import Base
from storefront.dependencies.get_db import get_db, get_referral_program
from storefront.database_model.user import User
from storefront.database_model.referral import ReferralReward, RewardType
from storefront.services.referral_ledger import ReferralLedger
from storefront.services.reward_store import RewardStore
from storefront.services.user_directory import UserDirectory

# Test database URL
TEST_DATABASE_URL = "sqlite+aiosqlite://"

# Create test engine
test_engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


@pytest_asyncio.fixture
async def db_session():
    """Create a test database session."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestingSessionLocal() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def program():
    """Referral program backed by the test database."""
    return ReferralProgramConfig(persistence_enabled=True)


@pytest.fixture
def mock_program():
    """Referral program without persistence."""
    return ReferralProgramConfig(persistence_enabled=False)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, program: ReferralProgramConfig):
    """Create a test client."""
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_referral_program] = lambda: program

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def mock_client(mock_program: ReferralProgramConfig):
    """Test client with no database configured."""
    async def override_get_db():
        yield None

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_referral_program] = lambda: mock_program

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def ledger(db_session: AsyncSession, program: ReferralProgramConfig):
    return ReferralLedger(db_session, program)


@pytest.fixture
def reward_store(db_session: AsyncSession, program: ReferralProgramConfig):
    return RewardStore(db_session, program)


@pytest_asyncio.fixture
async def referrer(db_session: AsyncSession) -> User:
    """Priya, who shares the code PRIY0042."""
    return await UserDirectory(db_session).create({
        "email": "priya@example.com",
        "name": "Priya Sharma",
        "mobile_number": "+919812345678",
        "referral_code": "PRIY0042",
    })


@pytest_asyncio.fixture
async def new_user(db_session: AsyncSession) -> User:
    """A freshly registered user with an auth-provider id."""
    return await UserDirectory(db_session).create({
        "id": "firebase-uid-nikhil-01",
        "email": "nikhil@example.com",
        "name": "Nikhil Rao",
    })


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    return await UserDirectory(db_session).create({
        "email": "ananya@example.com",
        "name": "Ananya Iyer",
    })


@pytest_asyncio.fixture
async def make_reward(db_session: AsyncSession):
    """Insert a reward row directly."""
    async def _make_reward(user_id, reward_type=RewardType.ORDER_DISCOUNT, amount=200.0,
                           used=False, expires_in_days=30):
        now = datetime.utcnow()
        reward = ReferralReward(
            user_id=user_id,
            type=reward_type.value,
            amount=amount,
            description="Test reward",
            used=used,
            used_at=now if used else None,
            expires_at=now + timedelta(days=expires_in_days) if expires_in_days is not None else None,
            created_at=now,
        )
        db_session.add(reward)
        await db_session.commit()
        await db_session.refresh(reward)
        return reward

    return _make_reward


@pytest_asyncio.fixture
async def unreachable_session(tmp_path):
    """Session bound to a database file that cannot be opened."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'storefront.db'}")
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def unreachable_client(unreachable_session: AsyncSession, program: ReferralProgramConfig):
    """Test client whose database is configured but down."""
    async def override_get_db():
        yield unreachable_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_referral_program] = lambda: program

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
