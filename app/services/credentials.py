"""
@description 凭证保管
@responsibility 以 Fernet 加密保存各服务的访问令牌，按用户和服务读取解密后的令牌
"""

from datetime import datetime
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken
from loguru import logger
from sqlalchemy import select

from app.core.database import get_session
from app.core.exceptions import AuthenticationError
from app.models.api_credential import ApiCredential

SERVICES = ("clickup", "monday")


def generate_key() -> str:
    return Fernet.generate_key().decode()


class CredentialVault:
    def __init__(self, encryption_key: str, session_factory=get_session):
        self._fernet = Fernet(encryption_key.encode())
        self._session_factory = session_factory

    def _encrypt(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return self._fernet.encrypt(value.encode()).decode()

    def _decrypt(self, value: str, service: str) -> str:
        try:
            return self._fernet.decrypt(value.encode()).decode()
        except InvalidToken:
            raise AuthenticationError(
                f"{service} 凭证无法解密，请重新保存令牌", service=service
            )

    async def set(
        self,
        user_id: str,
        service: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        workspace_id: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """保存凭证（同一用户同一服务只保留一条）"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiCredential).where(
                    ApiCredential.user_id == user_id, ApiCredential.service == service
                )
            )
            credential = result.scalar_one_or_none()
            if credential is None:
                credential = ApiCredential(user_id=user_id, service=service)
                session.add(credential)

            credential.access_token = self._encrypt(access_token)
            credential.refresh_token = self._encrypt(refresh_token)
            credential.workspace_id = workspace_id
            credential.expires_at = expires_at
            credential.updated_at = datetime.now()
            await session.commit()

        logger.info(f"已保存 {service} 凭证 (user={user_id})")

    async def get(self, user_id: str, service: str) -> Optional[str]:
        """读取解密后的访问令牌，未保存时返回 None"""
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiCredential.access_token).where(
                    ApiCredential.user_id == user_id, ApiCredential.service == service
                )
            )
            encrypted = result.scalar_one_or_none()

        if not encrypted:
            return None
        return self._decrypt(encrypted, service)

    async def require(self, user_id: str, service: str) -> str:
        """读取令牌，未保存时抛出 AuthenticationError"""
        token = await self.get(user_id, service)
        if not token:
            raise AuthenticationError(f"未找到 {service} 凭证，请先保存访问令牌", service)
        return token

    async def status(self, user_id: str) -> dict[str, bool]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ApiCredential.service).where(ApiCredential.user_id == user_id)
            )
            saved = set(result.scalars().all())
        return {service: service in saved for service in SERVICES}
