import pytest
from unittest.mock import AsyncMock, patch, MagicMock
from datetime import datetime, timedelta
from jose import jwt

from taskboard.services.security_service import SecurityService
from taskboard.models.user import User
from sqlalchemy.ext.asyncio import AsyncSession


class TestSecurityService:
    """Юниттесты для SecurityService"""

    def setup_method(self):
        """Настройка для каждого теста"""
        self.mock_db = AsyncMock(spec=AsyncSession)
        self.test_user = User(
            id=1,
            email="test@example.com",
            username="testuser",
            hashed_password="$2b$12$test_hashed_password",
            is_active=True,
        )

    def _mock_result(self, value):
        mock_scalars = MagicMock()
        mock_scalars.first.return_value = value

        mock_result = MagicMock()
        mock_result.scalars.return_value = mock_scalars
        return mock_result

    @pytest.mark.asyncio
    async def test_get_user_by_id_found(self):
        """Тест поиска пользователя по ID - найден"""
        self.mock_db.execute.return_value = self._mock_result(self.test_user)

        result = await SecurityService.get_user_by_id(self.mock_db, 1)

        assert result == self.test_user
        self.mock_db.execute.assert_called_once()

    @pytest.mark.asyncio
    async def test_get_user_by_id_not_found(self):
        """Тест поиска пользователя по ID - не найден"""
        self.mock_db.execute.return_value = self._mock_result(None)

        result = await SecurityService.get_user_by_id(self.mock_db, 999)

        assert result is None

    @patch('taskboard.services.security_service.settings')
    def test_verify_token_valid_access(self, mock_settings):
        """Тест проверки валидного access токена"""
        mock_settings.SECRET_KEY = "test_secret_key"
        mock_settings.ALGORITHM = "HS256"

        data = {"sub": "1", "type": "access", "exp": datetime.utcnow() + timedelta(minutes=30)}
        token = jwt.encode(data, "test_secret_key", algorithm="HS256")

        result = SecurityService.verify_token(token, "access")

        assert result is not None
        assert result["sub"] == "1"
        assert result["type"] == "access"

    @patch('taskboard.services.security_service.settings')
    def test_verify_token_expired(self, mock_settings):
        """Тест проверки истекшего токена"""
        mock_settings.SECRET_KEY = "test_secret_key"
        mock_settings.ALGORITHM = "HS256"

        data = {"sub": "1", "type": "access", "exp": datetime.utcnow() - timedelta(minutes=30)}
        token = jwt.encode(data, "test_secret_key", algorithm="HS256")

        assert SecurityService.verify_token(token, "access") is None

    @patch('taskboard.services.security_service.settings')
    def test_verify_token_wrong_type(self, mock_settings):
        """Тест проверки токена неправильного типа"""
        mock_settings.SECRET_KEY = "test_secret_key"
        mock_settings.ALGORITHM = "HS256"

        data = {"sub": "1", "type": "refresh", "exp": datetime.utcnow() + timedelta(days=7)}
        token = jwt.encode(data, "test_secret_key", algorithm="HS256")

        assert SecurityService.verify_token(token, "access") is None

    @patch('taskboard.services.security_service.settings')
    def test_verify_token_without_exp(self, mock_settings):
        """Токен без срока действия не принимается"""
        mock_settings.SECRET_KEY = "test_secret_key"
        mock_settings.ALGORITHM = "HS256"

        token = jwt.encode({"sub": "1", "type": "access"}, "test_secret_key", algorithm="HS256")

        assert SecurityService.verify_token(token, "access") is None

    @patch('taskboard.services.security_service.settings')
    def test_verify_token_wrong_signature(self, mock_settings):
        mock_settings.SECRET_KEY = "test_secret_key"
        mock_settings.ALGORITHM = "HS256"

        data = {"sub": "1", "type": "access", "exp": datetime.utcnow() + timedelta(minutes=30)}
        token = jwt.encode(data, "another_key", algorithm="HS256")

        assert SecurityService.verify_token(token, "access") is None
        assert SecurityService.decode_token(token) == {}

    @pytest.mark.asyncio
    async def test_get_current_user_success(self):
        """Тест получения пользователя по валидному токену"""
        payload = {"sub": "1", "type": "access"}

        with patch.object(SecurityService, 'verify_token', return_value=payload), \
             patch.object(SecurityService, 'get_user_by_id', return_value=self.test_user) as mock_get:
            result = await SecurityService.get_current_user(self.mock_db, "token")

            assert result == self.test_user
            mock_get.assert_awaited_once_with(self.mock_db, 1)

    @pytest.mark.asyncio
    async def test_get_current_user_invalid_token(self):
        with patch.object(SecurityService, 'verify_token', return_value=None):
            result = await SecurityService.get_current_user(self.mock_db, "invalid")
            assert result is None

    @pytest.mark.asyncio
    async def test_get_current_user_bad_subject(self):
        """sub должен быть числовым идентификатором"""
        with patch.object(SecurityService, 'verify_token', return_value={"sub": "abc", "type": "access"}):
            result = await SecurityService.get_current_user(self.mock_db, "token")
            assert result is None

    @pytest.mark.asyncio
    async def test_get_current_user_inactive(self):
        """Неактивный пользователь не проходит аутентификацию"""
        self.test_user.is_active = False

        with patch.object(SecurityService, 'verify_token', return_value={"sub": "1", "type": "access"}), \
             patch.object(SecurityService, 'get_user_by_id', return_value=self.test_user):
            result = await SecurityService.get_current_user(self.mock_db, "token")
            assert result is None


# Запуск тестов
if __name__ == "__main__":
    pytest.main([__file__, "-v"])
