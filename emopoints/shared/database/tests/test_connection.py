"""Tests for database connection manager."""
import json

import pytest
from unittest.mock import MagicMock, patch

from emopoints.shared.utils import configure_pii_salt
from emopoints.shared.database.connection import (
    DatabaseConfig,
    ConnectionManager,
)


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt("test_salt_that_is_at_least_32_characters_long")


@pytest.fixture
def mock_pool():
    with patch("emopoints.shared.database.connection.pool.ThreadedConnectionPool") as pool_cls:
        pool_instance = MagicMock()
        conn = MagicMock()
        pool_instance.getconn.return_value = conn
        pool_cls.return_value = pool_instance
        yield pool_cls, pool_instance, conn


class TestDatabaseConfig:
    """Tests for DatabaseConfig dataclass."""

    def test_default_values(self):
        config = DatabaseConfig(host="localhost")

        assert config.port == 5432
        assert config.database == "emopoints"
        assert config.min_connections == 2
        assert config.max_connections == 10
        assert config.ssl_mode == "require"

    def test_from_env(self):
        with patch.dict("os.environ", {
            "DB_HOST": "env-host",
            "DB_PORT": "5434",
            "DB_NAME": "env_db",
            "DB_USER": "env_user",
            "DB_PASSWORD": "env_pass",
            "DB_MAX_CONN": "4",
        }):
            config = DatabaseConfig.from_env()

            assert config.host == "env-host"
            assert config.port == 5434
            assert config.database == "env_db"
            assert config.username == "env_user"
            assert config.password == "env_pass"
            assert config.max_connections == 4

    def test_from_env_defaults(self):
        with patch.dict("os.environ", {}, clear=True):
            config = DatabaseConfig.from_env()

            assert config.host == "localhost"
            assert config.database == "emopoints"

    def test_from_secrets_manager(self):
        client = MagicMock()
        client.get_secret_value.return_value = {
            "SecretString": json.dumps({
                "host": "secret-host",
                "port": 6543,
                "dbname": "secret_db",
                "username": "svc",
                "password": "hunter2",
            })
        }

        with patch("emopoints.shared.database.connection.boto3.client", return_value=client) as factory:
            config = DatabaseConfig.from_secrets_manager("arn:aws:secretsmanager:x", region="eu-west-1")

        factory.assert_called_once_with("secretsmanager", region_name="eu-west-1")
        assert config.host == "secret-host"
        assert config.port == 6543
        assert config.database == "secret_db"
        assert config.username == "svc"

    def test_from_secrets_manager_propagates_errors(self):
        client = MagicMock()
        client.get_secret_value.side_effect = RuntimeError("access denied")

        with patch("emopoints.shared.database.connection.boto3.client", return_value=client):
            with pytest.raises(RuntimeError):
                DatabaseConfig.from_secrets_manager("arn:aws:secretsmanager:x")

    def test_load_prefers_secret_arn(self):
        client = MagicMock()
        client.get_secret_value.return_value = {
            "SecretString": json.dumps({"host": "secret-host", "username": "svc"})
        }

        with patch.dict("os.environ", {
            "DB_SECRET_ARN": "arn:aws:secretsmanager:db",
            "AWS_REGION": "ap-northeast-2",
            "DB_HOST": "env-host",
        }, clear=True):
            with patch("emopoints.shared.database.connection.boto3.client", return_value=client) as factory:
                config = DatabaseConfig.load()

        factory.assert_called_once_with("secretsmanager", region_name="ap-northeast-2")
        client.get_secret_value.assert_called_once_with(SecretId="arn:aws:secretsmanager:db")
        assert config.host == "secret-host"

    def test_load_falls_back_to_env(self):
        with patch.dict("os.environ", {"DB_HOST": "env-host"}, clear=True):
            with patch("emopoints.shared.database.connection.boto3.client") as factory:
                config = DatabaseConfig.load()

        factory.assert_not_called()
        assert config.host == "env-host"


class TestConnectionManager:
    """Tests for ConnectionManager class."""

    def test_not_initialized_until_first_use(self):
        manager = ConnectionManager(DatabaseConfig(host="localhost"))

        assert not manager.initialized
        assert manager.health_check() == {"status": "not_initialized", "healthy": False}

    def test_initialize_creates_pool(self, mock_pool):
        pool_cls, _, _ = mock_pool
        manager = ConnectionManager(DatabaseConfig(host="db", database="test_db"))

        manager.initialize()
        manager.initialize()

        assert manager.initialized
        pool_cls.assert_called_once()
        assert pool_cls.call_args.kwargs["database"] == "test_db"

    def test_get_connection_returns_to_pool(self, mock_pool):
        _, pool_instance, conn = mock_pool
        manager = ConnectionManager(DatabaseConfig(host="db"))

        with manager.get_connection() as borrowed:
            assert borrowed is conn

        pool_instance.putconn.assert_called_once_with(conn)

    def test_transaction_commits(self, mock_pool):
        _, _, conn = mock_pool
        manager = ConnectionManager(DatabaseConfig(host="db"))

        with manager.transaction():
            pass

        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()

    def test_transaction_rolls_back_and_reraises(self, mock_pool):
        _, pool_instance, conn = mock_pool
        manager = ConnectionManager(DatabaseConfig(host="db"))

        with pytest.raises(RuntimeError):
            with manager.transaction():
                raise RuntimeError("boom")

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        pool_instance.putconn.assert_called_once_with(conn)

    def test_health_check_connected(self, mock_pool):
        manager = ConnectionManager(DatabaseConfig(host="db"))
        manager.initialize()

        result = manager.health_check()

        assert result["healthy"] is True
        assert result["status"] == "connected"

    def test_health_check_reports_error(self, mock_pool):
        _, _, conn = mock_pool
        conn.cursor.side_effect = RuntimeError("connection reset")
        manager = ConnectionManager(DatabaseConfig(host="db"))
        manager.initialize()

        result = manager.health_check()

        assert result["healthy"] is False
        assert "connection reset" in result["error"]

    def test_close(self, mock_pool):
        _, pool_instance, _ = mock_pool
        manager = ConnectionManager(DatabaseConfig(host="db"))
        manager.initialize()

        manager.close()

        pool_instance.closeall.assert_called_once()
        assert not manager.initialized
