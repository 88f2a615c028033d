import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from databricks.aiosql.backend.types import (
    GetOperationStatusResponse,
    OperationHandle,
    OperationState,
)
from databricks.aiosql.context import ClientContext
from databricks.aiosql.exc import OperationStateError, OperationStateErrorCode
from databricks.aiosql.status import Status

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[GetOperationStatusResponse], Union[None, Awaitable[Any]]]

_FAILED_STATES = {
    OperationState.CANCELED: OperationStateErrorCode.CANCELED,
    OperationState.CLOSED: OperationStateErrorCode.CLOSED,
    OperationState.ERROR: OperationStateErrorCode.ERROR,
    OperationState.TIMEDOUT: OperationStateErrorCode.TIMEOUT,
}


class StatusTracker:
    """Tracks the server-side state of one operation.

    Terminal status responses are cached: once the server reported a
    terminal state it is never polled again.
    """

    def __init__(
        self,
        context: ClientContext,
        operation_handle: OperationHandle,
        initial_status: Optional[GetOperationStatusResponse] = None,
    ):
        self.context = context
        self.operation_handle = operation_handle
        self.state = OperationState.INITIALIZED
        self.has_result_set = operation_handle.has_result_set
        self._terminal_response: Optional[GetOperationStatusResponse] = None

        if initial_status is not None:
            self._process_response(initial_status)

    def _process_response(
        self, response: GetOperationStatusResponse
    ) -> GetOperationStatusResponse:
        Status.raise_for_status(response.status)

        if response.operation_state is not None:
            if response.operation_state != self.state:
                logger.debug(
                    "Operation %s state %s -> %s",
                    self.operation_handle.id,
                    self.state.name,
                    response.operation_state.name,
                )
            self.state = response.operation_state
        if response.has_result_set is not None:
            self.has_result_set = response.has_result_set

        if self.state.is_terminal:
            self._terminal_response = response
        return response

    async def status(self, progress: bool = False) -> GetOperationStatusResponse:
        if self._terminal_response is not None:
            return self._terminal_response

        response = await self.context.driver.get_operation_status(
            self.operation_handle, progress
        )
        return self._process_response(response)

    async def wait_until_ready(
        self, progress: bool = False, callback: Optional[ProgressCallback] = None
    ):
        """Poll until the operation finishes.

        Raises:
            OperationStateError: If the operation ended in any terminal state
                other than FINISHED
        """
        if self.state == OperationState.FINISHED:
            return

        while True:
            response = await self.status(progress)

            if callback is not None:
                result = callback(response)
                if inspect.isawaitable(result):
                    await result

            state = response.operation_state or self.state
            if state in (
                OperationState.INITIALIZED,
                OperationState.PENDING,
                OperationState.RUNNING,
            ):
                await asyncio.sleep(self.context.config.poll_interval)
                continue
            if state == OperationState.FINISHED:
                return

            raise OperationStateError(
                _FAILED_STATES.get(state, OperationStateErrorCode.UNKNOWN), response
            )
