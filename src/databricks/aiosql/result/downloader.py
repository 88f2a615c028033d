import logging
import time
from dataclasses import dataclass

import httpx

from databricks.aiosql.backend.types import ResultLink
from databricks.aiosql.exc import (
    CloudFetchDownloadError,
    CloudFetchError,
    CloudFetchLinkExpiredError,
)
from databricks.aiosql.result.utils import decompress_lz4

logger = logging.getLogger(__name__)


@dataclass
class DownloadableResultSettings:
    """Per-operation settings shared by every CloudFetch download.

    Attributes:
        is_lz4_compressed: Files are LZ4-frame compressed and must be decoded
        link_expiry_buffer_secs: Links expiring within this many seconds are
            treated as already expired
        download_timeout: Timeout of one file request, in seconds
        slow_download_threshold: Download speed in MB/s under which a
            warning is logged
    """

    is_lz4_compressed: bool
    link_expiry_buffer_secs: int = 0
    download_timeout: float = 60
    slow_download_threshold: float = 0.1


class ResultFileDownloader:
    def __init__(self, settings: DownloadableResultSettings, http_client: httpx.AsyncClient):
        self.settings = settings
        self._http_client = http_client

    async def download(self, link: ResultLink) -> bytes:
        """
        Download the file described by a CloudFetch link.

        Checks whether the link has expired or is about to, gets the file and
        decompresses it. Failures are not retried: an expired link cannot be
        refreshed from the client.
        """
        logger.debug(
            "ResultFileDownloader: starting file download, offset %s, row count %s",
            link.start_row_offset,
            link.row_count,
        )

        self._validate_link(link, self.settings.link_expiry_buffer_secs)

        start_time = time.monotonic()
        try:
            response = await self._http_client.get(
                link.file_link,
                headers=link.http_headers or None,
                timeout=self.settings.download_timeout,
            )
        except httpx.HTTPError as e:
            logger.error("CloudFetch download failed: %s", e)
            raise CloudFetchError(
                "CloudFetch download failed: {}".format(e),
                {"original-exception": e, "start-row-offset": link.start_row_offset},
            ) from e

        if not response.is_success:
            raise CloudFetchDownloadError(
                response.status_code,
                response.reason_phrase,
                {"start-row-offset": link.start_row_offset},
            )
        compressed_data = response.content

        self._log_download_metrics(
            link.file_link, len(compressed_data), time.monotonic() - start_time
        )

        data = (
            decompress_lz4(compressed_data)
            if self.settings.is_lz4_compressed
            else compressed_data
        )

        if link.bytes_num and len(data) != link.bytes_num:
            logger.debug(
                "ResultFileDownloader: downloaded file size %s does not match the expected value %s",
                len(data),
                link.bytes_num,
            )
        return data

    def _log_download_metrics(self, url: str, size: int, elapsed: float):
        megabytes_per_second = size / (1024 * 1024) / max(elapsed, 1e-6)
        # Presigned query strings carry credentials
        location = url.split("?", 1)[0]
        logger.debug(
            "Downloaded %d bytes in %.3fs (%.2f MB/s) from %s",
            size,
            elapsed,
            megabytes_per_second,
            location,
        )
        if megabytes_per_second < self.settings.slow_download_threshold:
            logger.warning(
                "Slow CloudFetch download from %s: %.2f MB/s",
                location,
                megabytes_per_second,
            )

    @staticmethod
    def _validate_link(link: ResultLink, expiry_buffer_secs: int):
        """Raise CloudFetchLinkExpiredError unless the link stays valid for
        more than `expiry_buffer_secs`."""
        current_time_ms = int(time.time() * 1000)
        if (
            link.expiry_time <= current_time_ms
            or link.expiry_time - current_time_ms <= expiry_buffer_secs * 1000
        ):
            raise CloudFetchLinkExpiredError(
                "CloudFetch link has expired",
                {
                    "expiry-time": link.expiry_time,
                    "start-row-offset": link.start_row_offset,
                },
            )
