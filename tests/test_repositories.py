"""Repository tests against mocked motor collections."""
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, ServerSelectionTimeoutError

from conftest import SOURCE_URL, make_record
from database.repositories.import_run_repo import ImportRunRepository, RunStatus, page_count
from database.repositories.job_repo import JobRepository
from shared.exceptions import PersistenceError
from shared.models import JobOutcome
from shared.utils import get_utc_now


def update_result(modified: int):
    result = MagicMock()
    result.modified_count = modified
    return result


class TestJobRepository:
    """Tests for JobRepository.upsert_job."""

    @pytest.mark.asyncio
    async def test_upsert_inserts_new(self, mock_mongo_db):
        """Test an absent before-image classifies the job as new."""
        mock_mongo_db.jobs.find_one_and_update.return_value = None
        repo = JobRepository(mock_mongo_db)

        outcome = await repo.upsert_job(make_record())

        assert outcome == JobOutcome.NEW

    @pytest.mark.asyncio
    async def test_upsert_is_single_atomic_call(self, mock_mongo_db):
        """Test reconciliation is one conditional upsert keyed on the natural key."""
        mock_mongo_db.jobs.find_one_and_update.return_value = {"_id": "x"}
        repo = JobRepository(mock_mongo_db)

        outcome = await repo.upsert_job(make_record(title="Senior Engineer"))

        assert outcome == JobOutcome.UPDATED
        mock_mongo_db.jobs.find_one.assert_not_called()
        args, kwargs = mock_mongo_db.jobs.find_one_and_update.call_args
        assert args[0] == {"external_id": "job-1", "source_url": SOURCE_URL}
        assert args[1]["$set"]["title"] == "Senior Engineer"
        assert "updated_at" in args[1]["$set"]
        assert "created_at" in args[1]["$setOnInsert"]
        assert kwargs["upsert"] is True
        assert kwargs["return_document"] == ReturnDocument.BEFORE

    @pytest.mark.asyncio
    async def test_duplicate_key_race_retries_as_update(self, mock_mongo_db):
        """Test losing a concurrent insert race ends as an update."""
        mock_mongo_db.jobs.find_one_and_update.side_effect = [
            DuplicateKeyError("E11000 duplicate key error"),
            {"_id": "x"}
        ]
        repo = JobRepository(mock_mongo_db)

        outcome = await repo.upsert_job(make_record())

        assert outcome == JobOutcome.UPDATED
        assert mock_mongo_db.jobs.find_one_and_update.await_count == 2

    @pytest.mark.asyncio
    async def test_driver_error_becomes_persistence_error(self, mock_mongo_db):
        """Test store outages surface as PersistenceError."""
        mock_mongo_db.jobs.find_one_and_update.side_effect = ServerSelectionTimeoutError("no servers")
        repo = JobRepository(mock_mongo_db)

        with pytest.raises(PersistenceError):
            await repo.upsert_job(make_record())


class TestImportRunRepository:
    """Tests for ImportRunRepository."""

    @pytest.mark.asyncio
    async def test_open_run(self, mock_mongo_db):
        """Test a run starts processing with only total_fetched set."""
        repo = ImportRunRepository(mock_mongo_db)

        run_id = await repo.open_run(SOURCE_URL, 5)

        run = mock_mongo_db.import_runs.insert_one.call_args[0][0]
        assert run_id.startswith("run_")
        assert run["_id"] == run_id
        assert run["status"] == RunStatus.PROCESSING
        assert run["total_fetched"] == 5
        assert run["new_jobs"] == run["updated_jobs"] == run["failed_jobs"] == run["total_imported"] == 0
        assert run["failure_reasons"] == []

    @pytest.mark.asyncio
    async def test_record_outcome_single_increment(self, mock_mongo_db):
        """Test the outcome counter and total_imported move in one $inc."""
        repo = ImportRunRepository(mock_mongo_db)

        await repo.record_outcome("run_1", JobOutcome.UPDATED)

        args, kwargs = mock_mongo_db.import_runs.find_one_and_update.call_args
        assert args[0] == {"_id": "run_1"}
        assert args[1]["$inc"] == {"updated_jobs": 1, "total_imported": 1}
        assert kwargs["return_document"] == ReturnDocument.AFTER

    @pytest.mark.asyncio
    async def test_record_outcome_rejects_unknown(self, mock_mongo_db):
        repo = ImportRunRepository(mock_mongo_db)
        with pytest.raises(ValueError):
            await repo.record_outcome("run_1", "skipped")

    @pytest.mark.asyncio
    async def test_record_failure_increments_and_appends(self, mock_mongo_db):
        """Test a failure is counted and appended in the same update."""
        repo = ImportRunRepository(mock_mongo_db)

        await repo.record_failure("run_1", "job-4", "Validation failed", "Missing required fields")

        update = mock_mongo_db.import_runs.find_one_and_update.call_args[0][1]
        assert update["$inc"] == {"failed_jobs": 1}
        assert update["$push"] == {"failure_reasons": {
            "job_key": "job-4",
            "reason": "Validation failed",
            "error": "Missing required fields"
        }}

    @pytest.mark.asyncio
    async def test_ledger_writes_raise_persistence_error(self, mock_mongo_db):
        """Test driver errors on counter writes surface as PersistenceError."""
        mock_mongo_db.import_runs.find_one_and_update.side_effect = ServerSelectionTimeoutError("no servers")
        repo = ImportRunRepository(mock_mongo_db)

        with pytest.raises(PersistenceError):
            await repo.record_outcome("run_1", JobOutcome.NEW)
        with pytest.raises(PersistenceError):
            await repo.record_failure("run_1", "job-4", "Validation failed", "Missing required fields")

    @pytest.mark.asyncio
    async def test_close_run_if_empty(self, mock_mongo_db):
        """Test an empty run is completed with its duration."""
        mock_mongo_db.import_runs.update_one.return_value = update_result(1)
        repo = ImportRunRepository(mock_mongo_db)

        assert await repo.close_run_if_empty("run_1", 42)

        query, update = mock_mongo_db.import_runs.update_one.call_args[0]
        assert query["total_fetched"] == 0
        assert update["$set"]["status"] == RunStatus.COMPLETED
        assert update["$set"]["duration_ms"] == 42

    @pytest.mark.asyncio
    async def test_complete_if_drained_waits_for_all_units(self, mock_mongo_db, sample_run):
        """Test a run with unsettled units stays processing."""
        sample_run.update(total_imported=3, new_jobs=3, failed_jobs=1)
        mock_mongo_db.import_runs.find_one.return_value = sample_run
        repo = ImportRunRepository(mock_mongo_db)

        assert await repo.complete_if_drained("run_test123") is None
        mock_mongo_db.import_runs.update_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_complete_if_drained_completes(self, mock_mongo_db, sample_run):
        """Test a fully settled run transitions once, guarded on processing."""
        sample_run["started_at"] = get_utc_now() - timedelta(seconds=2)
        mock_mongo_db.import_runs.find_one.return_value = sample_run
        mock_mongo_db.import_runs.update_one.return_value = update_result(1)
        repo = ImportRunRepository(mock_mongo_db)

        status = await repo.complete_if_drained("run_test123")

        assert status == RunStatus.COMPLETED
        query, update = mock_mongo_db.import_runs.update_one.call_args[0]
        assert query == {"_id": "run_test123", "status": RunStatus.PROCESSING}
        assert update["$set"]["duration_ms"] >= 2000

    @pytest.mark.asyncio
    async def test_complete_if_drained_all_failed(self, mock_mongo_db, sample_run):
        """Test a run where every unit failed ends failed."""
        sample_run.update(total_imported=0, new_jobs=0, failed_jobs=5)
        mock_mongo_db.import_runs.find_one.return_value = sample_run
        mock_mongo_db.import_runs.update_one.return_value = update_result(1)
        repo = ImportRunRepository(mock_mongo_db)

        assert await repo.complete_if_drained("run_test123") == RunStatus.FAILED

    @pytest.mark.asyncio
    async def test_complete_if_drained_never_moves_backwards(self, mock_mongo_db, sample_run):
        """Test terminal runs are left alone."""
        sample_run["status"] = RunStatus.COMPLETED
        mock_mongo_db.import_runs.find_one.return_value = sample_run
        repo = ImportRunRepository(mock_mongo_db)

        assert await repo.complete_if_drained("run_test123") is None
        mock_mongo_db.import_runs.update_one.assert_not_called()

    @pytest.mark.asyncio
    async def test_complete_if_drained_lost_race(self, mock_mongo_db, sample_run):
        """Test only the caller whose update matched reports the transition."""
        mock_mongo_db.import_runs.find_one.return_value = sample_run
        mock_mongo_db.import_runs.update_one.return_value = update_result(0)
        repo = ImportRunRepository(mock_mongo_db)

        assert await repo.complete_if_drained("run_test123") is None

    @pytest.mark.asyncio
    async def test_list_runs_filters_and_paginates(self, mock_mongo_db, sample_run):
        """Test history is newest first with an escaped, case-insensitive filter."""
        cursor = MagicMock()
        cursor.sort.return_value = cursor
        cursor.skip.return_value = cursor
        cursor.limit.return_value = cursor
        cursor.to_list = AsyncMock(return_value=[sample_run])
        mock_mongo_db.import_runs.find.return_value = cursor
        mock_mongo_db.import_runs.count_documents.return_value = 11
        repo = ImportRunRepository(mock_mongo_db)

        runs, total = await repo.list_runs(page=2, limit=5, source_filter="job_feed?x")

        query = mock_mongo_db.import_runs.find.call_args[0][0]
        assert query == {"source_url": {"$regex": r"job_feed\?x", "$options": "i"}}
        cursor.sort.assert_called_once_with("started_at", -1)
        cursor.skip.assert_called_once_with(5)
        cursor.limit.assert_called_once_with(5)
        assert runs == [sample_run]
        assert total == 11

    @pytest.mark.asyncio
    async def test_get_stats_empty(self, mock_mongo_db):
        """Test stats default to zeros when there are no runs."""
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[])
        mock_mongo_db.import_runs.aggregate.return_value = cursor
        repo = ImportRunRepository(mock_mongo_db)

        stats = await repo.get_stats()

        assert stats["total_imports"] == 0
        assert stats["total_failed"] == 0

    @pytest.mark.asyncio
    async def test_get_stats_sums(self, mock_mongo_db):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=[{
            "_id": None, "total_imports": 2, "total_fetched": 10, "total_imported": 8,
            "total_new": 4, "total_updated": 4, "total_failed": 2
        }])
        mock_mongo_db.import_runs.aggregate.return_value = cursor
        repo = ImportRunRepository(mock_mongo_db)

        stats = await repo.get_stats()

        assert "_id" not in stats
        assert stats["total_imported"] == 8

    def test_page_count(self):
        assert page_count(11, 5) == 3
        assert page_count(0, 50) == 0
