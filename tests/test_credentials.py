"""
@description 凭证保管测试
@responsibility 验证令牌加密保存、读取、覆盖和密钥不匹配时的错误
"""

import pytest
from sqlalchemy import select

from app.core.exceptions import AuthenticationError
from app.models.api_credential import ApiCredential
from app.services.credentials import CredentialVault, generate_key


@pytest.fixture
def vault(session_factory):
    return CredentialVault(generate_key(), session_factory)


class TestCredentialVault:
    """测试凭证读写"""

    @pytest.mark.asyncio
    async def test_set_and_get(self, vault, session_factory):
        """令牌加密存储，读取时解密"""
        await vault.set("user-1", "clickup", "pk_123", workspace_id="ws-1")

        assert await vault.get("user-1", "clickup") == "pk_123"

        async with session_factory() as session:
            result = await session.execute(select(ApiCredential))
            credential = result.scalar_one()
        assert credential.access_token != "pk_123"
        assert credential.workspace_id == "ws-1"
        assert credential.refresh_token is None

    @pytest.mark.asyncio
    async def test_overwrite(self, vault, session_factory):
        """同一用户同一服务只保留一条记录"""
        await vault.set("user-1", "monday", "old")
        await vault.set("user-1", "monday", "new")

        assert await vault.get("user-1", "monday") == "new"
        async with session_factory() as session:
            result = await session.execute(select(ApiCredential))
            assert len(result.scalars().all()) == 1

    @pytest.mark.asyncio
    async def test_missing(self, vault):
        assert await vault.get("user-1", "clickup") is None

        with pytest.raises(AuthenticationError) as exc_info:
            await vault.require("user-1", "clickup")
        assert exc_info.value.service == "clickup"

    @pytest.mark.asyncio
    async def test_users_isolated(self, vault):
        await vault.set("alice", "clickup", "token-a")

        assert await vault.get("bob", "clickup") is None
        assert await vault.status("alice") == {"clickup": True, "monday": False}
        assert await vault.status("bob") == {"clickup": False, "monday": False}

    @pytest.mark.asyncio
    async def test_wrong_key(self, vault, session_factory):
        """换了加密密钥后读取旧凭证抛出 AuthenticationError"""
        await vault.set("user-1", "clickup", "pk_123")
        other = CredentialVault(generate_key(), session_factory)

        with pytest.raises(AuthenticationError):
            await other.get("user-1", "clickup")
