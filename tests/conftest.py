"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from trading_mirror.credentials import KalshiCredentials, PolymarketCredentials
from trading_mirror.storage.database import (
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from trading_mirror.storage.mirror import MirrorStore

USER_ID = "user-1"


@pytest.fixture
def user_id() -> str:
    """User id shared by store and orchestrator tests."""
    return USER_ID


@pytest.fixture
async def async_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Create a file-backed async SQLite engine with the mirror schema."""
    engine = create_async_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'mirror.db'}")
    await init_async_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_async_session_factory(async_engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> MirrorStore:
    return MirrorStore(session_factory)


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """RSA key used to sign (and verify) Kalshi requests."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_private_key_pem(rsa_private_key: rsa.RSAPrivateKey) -> str:
    return rsa_private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


@pytest.fixture
def polymarket_credentials() -> PolymarketCredentials:
    return PolymarketCredentials(
        api_key="key",
        api_secret="secret",
        api_passphrase="passphrase",
        private_key="0x" + "1" * 64,
        wallet_address="0x1234567890abcdef1234567890abcdef12345678",
    )


@pytest.fixture
def kalshi_credentials(rsa_private_key_pem: str) -> KalshiCredentials:
    return KalshiCredentials(key_id="kalshi-key-id", private_key_pem=rsa_private_key_pem)
