import asyncio
import logging
from collections import deque
from typing import Deque, Optional

from databricks.aiosql.backend.types import (
    ArrowBatch,
    ResultLink,
    ResultSetMetadataResponse,
    RowSet,
)
from databricks.aiosql.context import ClientContext
from databricks.aiosql.result.downloader import (
    DownloadableResultSettings,
    ResultFileDownloader,
)
from databricks.aiosql.result.provider import ResultsProvider

logger = logging.getLogger(__name__)


class CloudFetchResultHandler(ResultsProvider[ArrowBatch]):
    """
    Downloads externally hosted Arrow files referenced by row set links.

    Links are downloaded in windows of `cloud_fetch_concurrent_downloads`
    files run concurrently. A new window starts only once every file of the
    previous one was served, one file per `fetch_next` call.
    """

    def __init__(
        self,
        context: ClientContext,
        source: ResultsProvider[Optional[RowSet]],
        metadata: ResultSetMetadataResponse,
    ):
        self.context = context
        self.source = source
        self.pending_links: Deque[ResultLink] = deque()
        self.downloaded_batches: Deque[ArrowBatch] = deque()

        config = context.config
        self._max_concurrent_downloads = config.cloud_fetch_concurrent_downloads
        self._downloader = ResultFileDownloader(
            DownloadableResultSettings(
                is_lz4_compressed=metadata.lz4_compressed,
                link_expiry_buffer_secs=config.link_expiry_buffer_secs,
            ),
            context.http_client,
        )

    async def has_more(self) -> bool:
        if self.pending_links or self.downloaded_batches:
            return True
        return await self.source.has_more()

    async def fetch_next(self, limit: int, disable_buffering: bool = False) -> ArrowBatch:
        row_set = await self.source.fetch_next(limit, disable_buffering)
        for link in (row_set.result_links if row_set else None) or []:
            if link.row_count <= 0:
                logger.debug(
                    "Skipping CloudFetch link at offset %s with row count %s",
                    link.start_row_offset,
                    link.row_count,
                )
                continue
            self.pending_links.append(link)

        if not self.downloaded_batches and self.pending_links:
            await self._download_window()

        if not self.downloaded_batches:
            return ArrowBatch()
        return self.downloaded_batches.popleft()

    async def _download_window(self):
        links = [
            self.pending_links.popleft()
            for _ in range(min(self._max_concurrent_downloads, len(self.pending_links)))
        ]
        logger.debug(
            "Downloading %d CloudFetch files, %d links pending",
            len(links),
            len(self.pending_links),
        )

        tasks = [asyncio.ensure_future(self._download(link)) for link in links]
        try:
            batches = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise
        self.downloaded_batches.extend(batches)

    async def _download(self, link: ResultLink) -> ArrowBatch:
        data = await self._downloader.download(link)
        return ArrowBatch(batches=[data], row_count=link.row_count)
