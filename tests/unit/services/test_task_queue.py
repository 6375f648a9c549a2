import uuid

import pytest

from veridicus.core.exceptions import EvidenceNotFoundError
from veridicus.services.task_queue import EvidenceTaskQueue


class RecordingHandler:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = []

    async def __call__(self, evidence_id, final_attempt):
        self.calls.append((evidence_id, final_attempt))
        if len(self.calls) <= self.failures:
            raise RuntimeError("model unavailable")


class TestEvidenceTaskQueue:
    @pytest.mark.asyncio
    async def test_job_runs_once_on_success(self):
        handler = RecordingHandler()
        queue = EvidenceTaskQueue(handler, workers=2, max_attempts=3, retry_delay=0)
        evidence_id = uuid.uuid4()

        queue.start()
        queue.enqueue(evidence_id)
        await queue.join()
        await queue.stop()

        assert handler.calls == [(evidence_id, False)]

    @pytest.mark.asyncio
    async def test_failed_job_is_retried(self):
        handler = RecordingHandler(failures=1)
        queue = EvidenceTaskQueue(handler, workers=1, max_attempts=3, retry_delay=0)
        evidence_id = uuid.uuid4()

        queue.start()
        queue.enqueue(evidence_id)
        await queue.join()
        await queue.stop()

        assert handler.calls == [(evidence_id, False), (evidence_id, False)]

    @pytest.mark.asyncio
    async def test_last_attempt_is_flagged_final(self):
        handler = RecordingHandler(failures=10)
        queue = EvidenceTaskQueue(handler, workers=1, max_attempts=3, retry_delay=0)
        evidence_id = uuid.uuid4()

        queue.start()
        queue.enqueue(evidence_id)
        await queue.join()
        await queue.stop()

        assert [final for _, final in handler.calls] == [False, False, True]

    @pytest.mark.asyncio
    async def test_recover_enqueues_every_unfinished_row(self):
        handler = RecordingHandler()
        queue = EvidenceTaskQueue(handler, workers=2, retry_delay=0)
        ids = [uuid.uuid4() for _ in range(3)]

        assert queue.recover([(evidence_id, 0) for evidence_id in ids]) == []
        assert queue.pending == 3

        queue.start()
        await queue.join()
        await queue.stop()

        assert sorted(call[0] for call in handler.calls) == sorted(ids)

    @pytest.mark.asyncio
    async def test_recovered_row_keeps_its_used_attempts(self):
        handler = RecordingHandler(failures=10)
        queue = EvidenceTaskQueue(handler, workers=1, max_attempts=3, retry_delay=0)
        evidence_id = uuid.uuid4()

        queue.recover([(evidence_id, 2)])
        queue.start()
        await queue.join()
        await queue.stop()

        assert handler.calls == [(evidence_id, True)]

    def test_recover_skips_rows_out_of_attempts(self):
        queue = EvidenceTaskQueue(RecordingHandler(), max_attempts=3, retry_delay=0)
        spent, fresh = uuid.uuid4(), uuid.uuid4()

        exhausted = queue.recover([(spent, 3), (fresh, 1)])

        assert exhausted == [spent]
        assert queue.pending == 1

    @pytest.mark.asyncio
    async def test_missing_row_is_not_retried(self):
        calls = []

        async def handler(evidence_id, final_attempt):
            calls.append(final_attempt)
            raise EvidenceNotFoundError("Evidence not found")

        queue = EvidenceTaskQueue(handler, workers=1, max_attempts=3, retry_delay=0)
        queue.start()
        queue.enqueue(uuid.uuid4())
        await queue.join()
        await queue.stop()

        assert calls == [False]

    def test_backoff_doubles(self):
        queue = EvidenceTaskQueue(RecordingHandler(), retry_delay=2.0)

        assert [queue.backoff(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]
