import asyncio
import os

from databricks import aiosql
from databricks.aiosql import OperationState


async def main():
    client = await aiosql.connect(
        server_hostname=os.getenv("DATABRICKS_SERVER_HOSTNAME"),
        http_path=os.getenv("DATABRICKS_HTTP_PATH"),
        access_token=os.getenv("DATABRICKS_TOKEN"),
    )
    try:
        session = await client.open_session()
        long_running_query = """
            SELECT COUNT(*) FROM RANGE(10000 * 16) x
            JOIN RANGE(10000) y
            ON FROM_UNIXTIME(x.id * y.id, 'yyyy-MM-dd') LIKE '%not%a%date%'
        """

        # Returns as soon as the statement is accepted
        operation = await session.execute_statement(long_running_query, run_async=True)

        # Polling every 5 seconds until the query is no longer pending
        while not (await operation.status()).operation_state.is_terminal:
            print("POLLING")
            await asyncio.sleep(5)

        status = await operation.status()
        if status.operation_state == OperationState.FINISHED:
            for row in await operation.fetch_all():
                print(row)
    finally:
        await client.close()


asyncio.run(main())
