"""
Neo4j Client Tests for Warden

- Connection management
- Query execution with a mocked driver
- Transactions
- Health checks
- Retry on transient errors
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from neo4j.exceptions import ClientError, ConstraintError, ServiceUnavailable, TransientError

from warden.database.client import RETRYABLE_EXCEPTIONS, Neo4jClient
from warden.database.schema import CONSTRAINTS, INDEXES, SchemaManager

# =============================================================================
# Fixtures
# =============================================================================


class FakeResult:
    """Async-iterable stand-in for a neo4j AsyncResult."""

    def __init__(self, records=None, counters=None):
        self._records = list(records or [])
        self._counters = counters

    def __aiter__(self):
        self._iter = iter(self._records)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration

    async def single(self):
        return self._records[0] if self._records else None

    async def consume(self):
        summary = MagicMock()
        summary.counters = self._counters or MagicMock(
            nodes_created=1, nodes_deleted=0, properties_set=3
        )
        return summary


@pytest.fixture
def mock_session():
    session = AsyncMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=None)
    return session


@pytest.fixture
def mock_driver(mock_session):
    driver = AsyncMock()
    driver.verify_connectivity = AsyncMock()
    driver.close = AsyncMock()
    driver.session = MagicMock(return_value=mock_session)
    return driver


@pytest.fixture
def neo4j_client():
    return Neo4jClient(uri="bolt://localhost:7687", user="neo4j", password="testpassword")


@pytest.fixture
def connected_client(neo4j_client, mock_driver):
    neo4j_client._driver = mock_driver
    neo4j_client._connected = True
    return neo4j_client


# =============================================================================
# Connection
# =============================================================================


class TestConnection:

    @pytest.mark.asyncio
    async def test_connect(self, neo4j_client, mock_driver):
        with patch(
            "warden.database.client.AsyncGraphDatabase.driver", return_value=mock_driver
        ) as driver_factory:
            await neo4j_client.connect()

        assert neo4j_client.is_connected
        driver_factory.assert_called_once()
        assert driver_factory.call_args.kwargs["auth"] == ("neo4j", "testpassword")
        mock_driver.verify_connectivity.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_closes_driver(self, neo4j_client, mock_driver):
        mock_driver.verify_connectivity.side_effect = ServiceUnavailable("Cannot connect")

        with patch("warden.database.client.AsyncGraphDatabase.driver", return_value=mock_driver):
            with pytest.raises(ServiceUnavailable):
                await neo4j_client.connect()

        mock_driver.close.assert_awaited_once()
        assert not neo4j_client.is_connected

    @pytest.mark.asyncio
    async def test_close(self, connected_client, mock_driver):
        await connected_client.close()

        mock_driver.close.assert_awaited_once()
        assert not connected_client.is_connected

    @pytest.mark.asyncio
    async def test_query_before_connect(self, neo4j_client):
        with pytest.raises(RuntimeError, match="not connected"):
            await neo4j_client.execute("RETURN 1")

    def test_from_settings(self, settings):
        client = Neo4jClient.from_settings(settings.model_copy(update={"neo4j_password": "pw"}))
        assert client._uri == settings.neo4j_uri
        assert client._database == settings.neo4j_database


# =============================================================================
# Queries
# =============================================================================


class TestQueries:

    @pytest.mark.asyncio
    async def test_execute(self, connected_client, mock_session):
        mock_session.run = AsyncMock(return_value=FakeResult([{"n": 1}, {"n": 2}]))

        result = await connected_client.execute("UNWIND [1, 2] AS n RETURN n")

        assert result == [{"n": 1}, {"n": 2}]

    @pytest.mark.asyncio
    async def test_execute_single(self, connected_client, mock_session):
        mock_session.run = AsyncMock(return_value=FakeResult([{"id": "acct-1"}]))

        result = await connected_client.execute_single("RETURN $id AS id", {"id": "acct-1"})

        assert result == {"id": "acct-1"}
        mock_session.run.assert_awaited_once_with("RETURN $id AS id", {"id": "acct-1"})

    @pytest.mark.asyncio
    async def test_execute_single_no_record(self, connected_client, mock_session):
        mock_session.run = AsyncMock(return_value=FakeResult([]))
        assert await connected_client.execute_single("MATCH (n) RETURN n") is None

    @pytest.mark.asyncio
    async def test_execute_write(self, connected_client, mock_session):
        mock_session.run = AsyncMock(return_value=FakeResult())

        counters = await connected_client.execute_write("CREATE (n)")

        assert counters == {"nodes_created": 1, "nodes_deleted": 0, "properties_set": 3}

    @pytest.mark.asyncio
    async def test_transaction_commits(self, connected_client, mock_session):
        tx = AsyncMock()
        tx.closed = MagicMock(return_value=False)
        mock_session.begin_transaction = AsyncMock(return_value=tx)

        async with connected_client.transaction() as active:
            await active.run("CREATE (n)")

        tx.commit.assert_awaited_once()
        tx.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transaction_rolls_back(self, connected_client, mock_session):
        tx = AsyncMock()
        tx.closed = MagicMock(return_value=False)
        mock_session.begin_transaction = AsyncMock(return_value=tx)

        with pytest.raises(ValueError):
            async with connected_client.transaction():
                raise ValueError("boom")

        tx.rollback.assert_awaited_once()
        tx.commit.assert_not_awaited()


# =============================================================================
# Retry
# =============================================================================


class TestRetry:

    def test_retryable_exceptions(self):
        assert ServiceUnavailable in RETRYABLE_EXCEPTIONS
        assert TransientError in RETRYABLE_EXCEPTIONS

    @pytest.mark.asyncio
    async def test_execute_single_retries_transient_error(self, connected_client, mock_session):
        calls = []

        async def run(*args, **kwargs):
            calls.append(args)
            if len(calls) == 1:
                raise TransientError("Transient failure")
            return FakeResult([{"ok": True}])

        mock_session.run = run

        assert await connected_client.execute_single("RETURN true AS ok") == {"ok": True}
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_execute_conditional_single_attempt(self, connected_client, mock_session):
        """A counter update is never replayed after a dropped connection."""
        mock_session.run = AsyncMock(side_effect=ServiceUnavailable("connection lost"))

        with pytest.raises(ServiceUnavailable):
            await connected_client.execute_conditional(
                "MATCH (a:Account {id: $id}) SET a.failed_attempts = a.failed_attempts + 1",
                {"id": "acct-1"},
            )

        assert mock_session.run.await_count == 1

    @pytest.mark.asyncio
    async def test_execute_conditional_returns_record(self, connected_client, mock_session):
        mock_session.run = AsyncMock(return_value=FakeResult([{"rotated": True}]))

        assert await connected_client.execute_conditional("RETURN true AS rotated") == {"rotated": True}

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, connected_client, mock_session):
        mock_session.run = AsyncMock(side_effect=ClientError("Syntax error"))

        with pytest.raises(ClientError):
            await connected_client.execute("RETURN")

        assert mock_session.run.await_count == 1


# =============================================================================
# Health
# =============================================================================


class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_healthy(self, connected_client, mock_session):
        mock_session.run = AsyncMock(
            return_value=FakeResult([{"name": "Neo4j Kernel", "versions": ["5.20"], "edition": "community"}])
        )

        result = await connected_client.health_check()

        assert result["status"] == "healthy"
        assert result["details"]["name"] == "Neo4j Kernel"
        assert await connected_client.verify_connection() is True

    @pytest.mark.asyncio
    async def test_unhealthy_never_raises(self, neo4j_client):
        """Not connected at all still yields a status."""
        result = await neo4j_client.health_check()

        assert result["status"] == "unhealthy"
        assert await neo4j_client.verify_connection() is False


# =============================================================================
# Schema
# =============================================================================


class TestSchemaManager:

    @pytest.mark.asyncio
    async def test_ensure_schema(self):
        client = AsyncMock()
        client.execute_write = AsyncMock(return_value={})

        results = await SchemaManager(client).ensure_schema()

        assert set(results) == {name for name, _ in CONSTRAINTS + INDEXES}
        assert all(results.values())
        statements = [call.args[0] for call in client.execute_write.await_args_list]
        assert all("IF NOT EXISTS" in s for s in statements)

    @pytest.mark.asyncio
    async def test_ensure_schema_reports_failures(self):
        client = AsyncMock()

        async def execute_write(statement, parameters=None):
            if "account_email_unique" in statement:
                raise ConstraintError("Constraint conflict")
            return {}

        client.execute_write = execute_write

        results = await SchemaManager(client).ensure_schema()

        assert results["account_email_unique"] is False
        assert results["account_id_unique"] is True

    @pytest.mark.asyncio
    async def test_drop_all(self):
        client = AsyncMock()
        client.execute_write = AsyncMock(return_value={})

        await SchemaManager(client).drop_all()

        assert client.execute_write.await_count == len(CONSTRAINTS) + len(INDEXES)
