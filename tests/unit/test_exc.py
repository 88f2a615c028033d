import unittest

from databricks.aiosql.backend.types import (
    OperationHandle,
    OperationState,
    ResultFormat,
    SessionHandle,
    StatusCode,
    StatusInfo,
)
from databricks.aiosql.exc import (
    CloudFetchDownloadError,
    DatabaseError,
    OperationStateError,
    OperationStateErrorCode,
    RetryError,
    RetryErrorCode,
    StatusError,
    UnsupportedResultFormatError,
)
from databricks.aiosql.status import Status

from tests.unit.mocks import status_response


class StatusTests(unittest.TestCase):
    def test_raise_for_status(self):
        for code in (StatusCode.SUCCESS, StatusCode.SUCCESS_WITH_INFO, StatusCode.STILL_EXECUTING):
            Status.raise_for_status(StatusInfo(status_code=code))
        for code in (StatusCode.ERROR, StatusCode.INVALID_HANDLE):
            with self.assertRaises(StatusError):
                Status.raise_for_status(StatusInfo(status_code=code))

    def test_status_error_details(self):
        error = StatusError(
            StatusInfo(
                status_code=StatusCode.ERROR,
                error_message="Syntax error",
                sql_state="42000",
                info_messages=["at line 1"],
            )
        )

        self.assertIsInstance(error, DatabaseError)
        self.assertEqual(str(error), "Syntax error")
        self.assertEqual(error.code, -1)
        self.assertEqual(error.sql_state, "42000")
        self.assertEqual(error.info_messages, ["at line 1"])
        self.assertIn('"sql-state": "42000"', error.message_with_context())

    def test_success(self):
        self.assertTrue(Status.success().is_success)
        with_info = Status.success(["note"])
        self.assertEqual(with_info.info, ["note"])
        self.assertEqual(repr(with_info), "Status(SUCCESS_WITH_INFO)")


class OperationStateErrorTests(unittest.TestCase):
    def test_default_messages(self):
        self.assertEqual(
            OperationStateError(OperationStateErrorCode.CANCELED).message,
            "The operation was canceled by a client",
        )
        self.assertEqual(
            OperationStateError(OperationStateErrorCode.CLOSED).message,
            "The operation was closed by a client",
        )

    def test_error_prefers_server_message(self):
        response = status_response(
            OperationState.ERROR,
            error_message="raw",
            display_message="[TABLE_OR_VIEW_NOT_FOUND] t",
            diagnostic_info="stack",
        )

        error = OperationStateError(OperationStateErrorCode.ERROR, response)

        self.assertEqual(error.message, "[TABLE_OR_VIEW_NOT_FOUND] t")
        self.assertEqual(error.context["diagnostic-info"], "stack")
        self.assertEqual(error.context["operation-state"], "ERROR")

    def test_other_errors_keep_default_message(self):
        response = status_response(OperationState.TIMEDOUT, display_message="ignored")

        error = OperationStateError(OperationStateErrorCode.TIMEOUT, response)

        self.assertEqual(error.message, "The operation is in a timed out state")


class OtherErrorTests(unittest.TestCase):
    def test_unsupported_result_format(self):
        error = UnsupportedResultFormatError(ResultFormat.ROW_BASED_SET)
        self.assertEqual(error.message, "Unsupported result format: ROW_BASED_SET")

    def test_cloud_fetch_download_error(self):
        error = CloudFetchDownloadError(500, "Internal Server Error")
        self.assertEqual(error.status_code, 500)
        self.assertEqual(error.message, "CloudFetch HTTP error 500 Internal Server Error")

    def test_retry_error(self):
        self.assertEqual(
            RetryError(RetryErrorCode.TIMEOUT_EXCEEDED).message,
            "Max retry duration exceeded",
        )


class HandleIdTests(unittest.TestCase):
    def test_bytes_guid_renders_as_uuid(self):
        handle = OperationHandle(
            guid=b"\x01\xee\x1d)\xa4\x19\x1d\xb6\xa9\xc0\x8d\xf1\xfe\xbaB\xdd"
        )
        self.assertEqual(handle.id, "01ee1d29-a419-1db6-a9c0-8df1feba42dd")

    def test_non_uuid_bytes_render_as_hex(self):
        self.assertEqual(SessionHandle(guid=b"\x01\x02").id, "0102")

    def test_string_guid_is_kept(self):
        self.assertEqual(OperationHandle(guid="01ef-statement").id, "01ef-statement")

    def test_missing_guid(self):
        self.assertEqual(OperationHandle(guid=None).id, "00000000-0000-0000-0000-000000000000")
