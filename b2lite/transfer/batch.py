"""
Batch Uploader

Design Decision: Scheduling
===========================

Options Considered:
1. Semaphore only: start every upload, let N run at a time
   - Best throughput, but a failure is only seen after everything started
2. Fixed waves: split into chunks of N, run a chunk, wait, next chunk
   - A slow member holds up its wave
   - Exactly N in flight at most, and a failure stops the batch at a
     wave boundary so later files are never sent

Decision: Waves of N, each member holding a ConcurrencyLimiter permit
while its request runs. Results keep input order.

Failure Policy (fail-fast):
- The failing wave is allowed to settle (its other members finish)
- No later wave starts
- BatchUploadError names the first failing item in input order and
  carries the records already stored; nothing is deleted
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple, Union

from ..errors import BatchUploadError, StoreError
from ..models import FileRecord
from .limiter import ConcurrencyLimiter
from .uploader import FileUploader

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3


@dataclass
class BatchItem:
    """One payload of a batch."""
    file_name: str
    data: bytes
    content_type: Optional[str] = None
    file_info: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def coerce(cls, item: Union['BatchItem', Tuple]) -> 'BatchItem':
        """Accept BatchItem, (name, data) or (name, data, options)."""
        if isinstance(item, BatchItem):
            return item
        if len(item) == 2:
            return cls(file_name=item[0], data=item[1])
        file_name, data, options = item
        options = options or {}
        return cls(
            file_name=file_name,
            data=data,
            content_type=options.get('content_type'),
            file_info=dict(options.get('file_info') or {}),
        )


def split_waves(count: int, size: int) -> List[range]:
    """Index ranges of consecutive waves, e.g. (5, 2) -> [0:2], [2:4], [4:5]."""
    if size < 1:
        raise ValueError(f"concurrency must be >= 1, got {size}")
    return [range(start, min(start + size, count)) for start in range(0, count, size)]


class BatchUploader:
    """Uploads many payloads through one FileUploader, N at a time."""

    def __init__(self, uploader: FileUploader):
        self.uploader = uploader

        # Sizes of the waves of the most recent batch
        self.last_waves: List[int] = []
        self.last_limiter: Optional[ConcurrencyLimiter] = None

    async def upload_many(self, files: Sequence[Union[BatchItem, Tuple]],
                          concurrency: int = DEFAULT_CONCURRENCY) -> List[FileRecord]:
        """
        Upload files in waves of `concurrency`.

        Returns:
            FileRecords in input order

        Raises:
            BatchUploadError: first failure, in input order
        """
        items = [BatchItem.coerce(f) for f in files]
        waves = split_waves(len(items), concurrency)
        limiter = ConcurrencyLimiter(concurrency)

        self.last_waves = []
        self.last_limiter = limiter
        results: List[FileRecord] = []

        logger.info(f"Uploading {len(items)} files in {len(waves)} waves "
                    f"(concurrency {concurrency})")

        async def upload_one(item: BatchItem) -> FileRecord:
            async with limiter:
                return await self.uploader.upload(
                    item.file_name, item.data,
                    content_type=item.content_type,
                    file_info=item.file_info,
                )

        for wave_number, wave in enumerate(waves):
            self.last_waves.append(len(wave))
            outcomes = await asyncio.gather(
                *(upload_one(items[i]) for i in wave),
                return_exceptions=True,
            )

            for index, outcome in zip(wave, outcomes):
                if isinstance(outcome, StoreError):
                    logger.error(f"Batch stopped at wave {wave_number + 1}: "
                                 f"{items[index].file_name} failed")
                    stored = results + [o for o in outcomes if isinstance(o, FileRecord)]
                    raise BatchUploadError(index, items[index].file_name,
                                           outcome, completed=stored) from outcome
                if isinstance(outcome, BaseException):
                    raise outcome

            results.extend(outcomes)
            logger.debug(f"Wave {wave_number + 1}/{len(waves)} done ({len(wave)} files)")

        return results
