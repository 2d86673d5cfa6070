# tests/conftest.py — Shared test fixtures
import os
import uuid
from typing import Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["PORTAL_SESSION_SECRET"] = "test-portal-session-secret-min-32-chars!!"
os.environ["ENVIRONMENT"] = "test"

from models import (
    Base, User, Organisation, Space, SpaceMember, Page, Block,
    SpaceStatus, AccessMode, MemberRole,
)
from activity import ActivityLogger, get_activity_logger
from auth import AuthService
from database import get_db_session
from identity import RequestContext, Staff, PortalSession, Anonymous
from portal_auth import GRANT_MEMBER, session_manager
from main import app


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


class BrokenSession:
    """Stand-in session factory whose commits always fail"""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def add(self, _obj):
        pass

    async def commit(self):
        raise OperationalError("INSERT", {}, Exception("database is locked"))


@pytest_asyncio.fixture(scope="function")
async def activity(session_factory):
    """Activity logger writing to the test database; drained before teardown"""
    logger = ActivityLogger(session_factory)
    yield logger
    await logger.drain()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, activity):
    """HTTP test client with overridden DB and activity dependencies"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_activity_logger] = lambda: activity
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


# ============================================================
# DOMAIN FIXTURES
# ============================================================

@pytest_asyncio.fixture
async def test_org(db_session):
    """Create a test organisation"""
    org = Organisation(id=str(uuid.uuid4()), name="Test Agency", slug="test-agency", settings={})
    db_session.add(org)
    await db_session.commit()
    return org


@pytest_asyncio.fixture
async def staff_user(db_session, test_org):
    """Staff account that owns every space built by the `spaces` factory"""
    user = User(
        id=str(uuid.uuid4()),
        email="owner@agency.dev",
        display_name="Space Owner",
        password_hash=AuthService.hash_password("OwnerPassword123!"),
        organisation_id=test_org.id,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def outsider_user(db_session, test_org):
    """Staff account with no membership in any space"""
    user = User(
        id=str(uuid.uuid4()),
        email="outsider@agency.dev",
        display_name="Outsider",
        password_hash=AuthService.hash_password("OutsiderPassword123!"),
        organisation_id=test_org.id,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    return user


class SpaceFactory:
    """Builds spaces, members, pages and blocks directly in the test database"""

    def __init__(self, db: AsyncSession, org: Organisation, owner: User):
        self.db = db
        self.org = org
        self.owner = owner

    async def space(
        self,
        status: SpaceStatus = SpaceStatus.ACTIVE,
        access_mode: AccessMode = AccessMode.RESTRICTED,
        password: Optional[str] = None,
        **fields,
    ) -> Space:
        space = Space(
            id=str(uuid.uuid4()),
            organisation_id=self.org.id,
            name=fields.pop("name", "Onboarding"),
            client_name=fields.pop("client_name", "Acme"),
            status=status,
            access_mode=access_mode,
            access_password_hash=AuthService.hash_password(password) if password else None,
            **fields,
        )
        self.db.add(space)
        self.db.add(SpaceMember(
            space_id=space.id,
            invited_email=self.owner.email,
            role=MemberRole.OWNER,
            user_id=self.owner.id,
        ))
        await self.db.commit()
        return space

    async def member(self, space: Space, email: str, role: MemberRole = MemberRole.STAKEHOLDER, **fields) -> SpaceMember:
        member = SpaceMember(space_id=space.id, invited_email=email.lower(), role=role, **fields)
        self.db.add(member)
        await self.db.commit()
        return member

    async def page(self, space: Space, slug: str = "welcome", sort_order: int = 0, **fields) -> Page:
        page = Page(
            space_id=space.id,
            title=fields.pop("title", slug.replace("-", " ").title()),
            slug=slug,
            sort_order=sort_order,
            **fields,
        )
        self.db.add(page)
        await self.db.commit()
        return page

    async def block(self, page: Page, type: str, content: Optional[dict] = None, sort_order: int = 0, **fields) -> Block:
        block = Block(page_id=page.id, type=type, content=content or {}, sort_order=sort_order, **fields)
        self.db.add(block)
        await self.db.commit()
        return block


@pytest_asyncio.fixture
async def spaces(db_session, test_org, staff_user):
    return SpaceFactory(db_session, test_org, staff_user)


# ============================================================
# HELPERS
# ============================================================

def get_auth_headers(user: User) -> dict:
    """Generate staff auth headers for a user"""
    token_data = {
        "sub": user.id,
        "email": user.email,
        "organisation_id": user.organisation_id,
    }
    token = AuthService.create_access_token(token_data)
    return {"Authorization": f"Bearer {token}"}


def portal_headers(space_id: str, email: str, grant: str = GRANT_MEMBER) -> dict:
    """Portal session header for a stakeholder email"""
    token, _claims = session_manager.create(space_id, email, grant=grant)
    return {"X-Portal-Session": token}


def staff_ctx(space: Space, user: User) -> RequestContext:
    return RequestContext(space_id=space.id, identity=Staff(user_id=user.id, email=user.email))


def session_ctx(space: Space, email: str, grant: str = GRANT_MEMBER) -> RequestContext:
    return RequestContext(space_id=space.id, identity=PortalSession(email=email, grant=grant))


def anonymous_ctx(space: Space) -> RequestContext:
    return RequestContext(space_id=space.id, identity=Anonymous())
