import time
import unittest
from unittest.mock import AsyncMock, patch

import httpx
import lz4.frame

from databricks.aiosql.backend.types import ResultFormat, ResultLink, RowSet
from databricks.aiosql.exc import (
    CloudFetchDownloadError,
    CloudFetchError,
    CloudFetchLinkExpiredError,
)
from databricks.aiosql.result.cloud_fetch_result_handler import CloudFetchResultHandler
from databricks.aiosql.result.downloader import (
    DownloadableResultSettings,
    ResultFileDownloader,
)
from databricks.aiosql.result.provider import ResultsProvider

from tests.unit.mocks import make_context, metadata_response


def make_link(index=0, row_count=10, expires_in_secs=3600, **kwargs):
    return ResultLink(
        file_link="https://storage.example.com/file-{}?sig=abc".format(index),
        expiry_time=int((time.time() + expires_in_secs) * 1000),
        start_row_offset=index * row_count,
        row_count=row_count,
        **kwargs,
    )


class LinksSource(ResultsProvider):
    def __init__(self, *row_sets):
        self.row_sets = list(row_sets)

    async def fetch_next(self, limit, disable_buffering=False):
        return self.row_sets.pop(0) if self.row_sets else None

    async def has_more(self):
        return bool(self.row_sets)


class DownloaderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.http_client = AsyncMock()

    async def test_download_returns_content(self):
        self.http_client.get.return_value = httpx.Response(200, content=b"arrow-data")
        downloader = ResultFileDownloader(
            DownloadableResultSettings(is_lz4_compressed=False), self.http_client
        )
        link = make_link(http_headers={"x-ms-blob-type": "BlockBlob"})

        data = await downloader.download(link)

        self.assertEqual(data, b"arrow-data")
        self.http_client.get.assert_awaited_once_with(
            link.file_link, headers={"x-ms-blob-type": "BlockBlob"}, timeout=60
        )

    async def test_download_decompresses_lz4(self):
        self.http_client.get.return_value = httpx.Response(
            200, content=lz4.frame.compress(b"arrow-data")
        )
        downloader = ResultFileDownloader(
            DownloadableResultSettings(is_lz4_compressed=True), self.http_client
        )

        self.assertEqual(await downloader.download(make_link()), b"arrow-data")

    async def test_expired_link_is_not_downloaded(self):
        downloader = ResultFileDownloader(
            DownloadableResultSettings(is_lz4_compressed=False), self.http_client
        )

        with self.assertRaises(CloudFetchLinkExpiredError) as cm:
            await downloader.download(make_link(expires_in_secs=-1))

        self.assertIn("link has expired", cm.exception.message)
        self.http_client.get.assert_not_awaited()

    async def test_link_within_expiry_buffer_is_not_downloaded(self):
        downloader = ResultFileDownloader(
            DownloadableResultSettings(is_lz4_compressed=False, link_expiry_buffer_secs=30),
            self.http_client,
        )

        with self.assertRaises(CloudFetchLinkExpiredError):
            await downloader.download(make_link(expires_in_secs=10))

    async def test_http_error_status(self):
        self.http_client.get.return_value = httpx.Response(403)
        downloader = ResultFileDownloader(
            DownloadableResultSettings(is_lz4_compressed=False), self.http_client
        )

        with self.assertRaises(CloudFetchDownloadError) as cm:
            await downloader.download(make_link())

        self.assertEqual(cm.exception.status_code, 403)
        self.assertEqual(cm.exception.message, "CloudFetch HTTP error 403 Forbidden")

    async def test_transport_error(self):
        self.http_client.get.side_effect = httpx.ConnectError("refused")
        downloader = ResultFileDownloader(
            DownloadableResultSettings(is_lz4_compressed=False), self.http_client
        )

        with self.assertRaises(CloudFetchError) as cm:
            await downloader.download(make_link())

        self.assertIsInstance(cm.exception.__cause__, httpx.ConnectError)


class CloudFetchResultHandlerTests(unittest.IsolatedAsyncioTestCase):
    def _handler(self, source, **config):
        context = make_context(http_client=AsyncMock(), **config)
        return CloudFetchResultHandler(
            context, source, metadata_response(ResultFormat.URL_BASED_SET)
        )

    async def test_downloads_links_in_windows(self):
        links = [make_link(i) for i in range(8)]
        handler = self._handler(
            LinksSource(RowSet(result_links=links)), cloud_fetch_concurrent_downloads=5
        )

        with patch.object(
            ResultFileDownloader, "download", new_callable=AsyncMock
        ) as download:
            download.side_effect = lambda link: link.file_link.encode()

            first = await handler.fetch_next(100)

            self.assertEqual(download.await_count, 5)
            self.assertEqual(len(handler.pending_links), 3)
            self.assertEqual(len(handler.downloaded_batches), 4)
            self.assertEqual(first.batches, [links[0].file_link.encode()])
            self.assertEqual(first.row_count, 10)

            served = [first]
            while await handler.has_more():
                served.append(await handler.fetch_next(100))

        self.assertEqual(download.await_count, 8)
        self.assertEqual(
            [batch.batches[0] for batch in served], [link.file_link.encode() for link in links]
        )

    async def test_skips_links_without_rows(self):
        handler = self._handler(
            LinksSource(RowSet(result_links=[make_link(0, row_count=0), make_link(1)]))
        )

        with patch.object(ResultFileDownloader, "download", new_callable=AsyncMock) as download:
            download.return_value = b"data"
            await handler.fetch_next(100)

        download.assert_awaited_once()
        self.assertEqual(download.await_args.args[0].start_row_offset, 10)

    async def test_download_failure_propagates(self):
        handler = self._handler(LinksSource(RowSet(result_links=[make_link(0), make_link(1)])))

        with patch.object(ResultFileDownloader, "download", new_callable=AsyncMock) as download:
            download.side_effect = CloudFetchLinkExpiredError("CloudFetch link has expired")
            with self.assertRaises(CloudFetchLinkExpiredError):
                await handler.fetch_next(100)

    async def test_no_links(self):
        handler = self._handler(LinksSource(RowSet()))

        batch = await handler.fetch_next(100)

        self.assertEqual(batch.batches, [])
        self.assertFalse(await handler.has_more())
