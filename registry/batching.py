"""
Async batch submission on top of the synchronous ledger
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from config.config import LedgerConfig
from zk.exceptions import NullifierError
from zk.zk_proofs import NullifierProofBundle

from .ledger import NullifierLedger, SubmissionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BatchResult:
    index: int
    proposal_id: str
    result: Optional[SubmissionResult] = None
    timed_out: bool = False
    error: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.result is not None and self.result.accepted


class BatchSubmitter:
    """Submits many bundles with a concurrency limit and per-submission timeout

    Chunks of ``max_batch_size`` are processed one after another; inside a
    chunk at most ``max_concurrent_submissions`` ledger calls run at once in
    worker threads. A timed-out call is reported with ``timed_out=True``; the
    worker thread is not interrupted, so the ledger may still record it and
    callers should check ``status`` before resubmitting. Its slot stays taken
    until the thread returns.
    """

    def __init__(self, ledger: NullifierLedger, config: Optional[LedgerConfig] = None):
        self.ledger = ledger
        self.config = config or ledger.config
        self.max_batch_size = self.config.max_batch_size
        self.max_concurrent = self.config.max_concurrent_submissions
        self.timeout = self.config.submit_timeout

    async def _submit_one(self, index: int, bundle: NullifierProofBundle,
                          proposal_id: str, semaphore: asyncio.Semaphore) -> BatchResult:
        await semaphore.acquire()
        worker = asyncio.ensure_future(
            asyncio.to_thread(self.ledger.submit, bundle, proposal_id))
        # the slot is held until the worker thread returns, even after a timeout
        worker.add_done_callback(lambda _: semaphore.release())
        try:
            if self.timeout is not None:
                result = await asyncio.wait_for(asyncio.shield(worker),
                                                timeout=self.timeout)
            else:
                result = await worker
        except asyncio.TimeoutError:
            logger.warning(f"Submission {index} on {proposal_id} timed out "
                           f"after {self.timeout}s")
            worker.add_done_callback(
                lambda done: self._log_late_outcome(index, proposal_id, done))
            return BatchResult(index, proposal_id, timed_out=True)
        except NullifierError as e:
            logger.warning(f"Submission {index} on {proposal_id} refused: {e}")
            return BatchResult(index, proposal_id, error=str(e))
        return BatchResult(index, proposal_id, result=result)

    @staticmethod
    def _log_late_outcome(index: int, proposal_id: str, worker: asyncio.Future):
        if worker.cancelled():
            return
        error = worker.exception()
        if error is not None:
            logger.warning(f"Timed-out submission {index} on {proposal_id} "
                           f"failed: {error}")
        else:
            outcome = worker.result()
            logger.info(f"Timed-out submission {index} on {proposal_id} finished: "
                        f"{'accepted' if outcome.accepted else outcome.reason.value}")

    async def submit_many(self, submissions: Sequence[Tuple[NullifierProofBundle, str]]
                          ) -> List[BatchResult]:
        """Results come back in the order of ``submissions``"""
        semaphore = asyncio.Semaphore(self.max_concurrent)
        results: List[BatchResult] = []

        for start in range(0, len(submissions), self.max_batch_size):
            chunk = submissions[start:start + self.max_batch_size]
            chunk_results = await asyncio.gather(*[
                self._submit_one(start + offset, bundle, proposal_id, semaphore)
                for offset, (bundle, proposal_id) in enumerate(chunk)
            ])
            results.extend(chunk_results)

        accepted = sum(1 for r in results if r.accepted)
        logger.info(f"Batch of {len(results)} submissions: {accepted} accepted")
        return results
