import asyncio
import os

from databricks import aiosql

"""
A running operation may be cancelled from another task by calling its
`cancel()` method, as shown in the example below.
"""


async def main():
    async with aiosql.Client() as client:
        await client.connect(
            server_hostname=os.getenv("DATABRICKS_SERVER_HOSTNAME"),
            http_path=os.getenv("DATABRICKS_HTTP_PATH"),
            access_token=os.getenv("DATABRICKS_TOKEN"),
        )
        session = await client.open_session()

        operation = await session.execute_statement(
            "SELECT SUM(A.id - B.id) "
            + "FROM range(1000000000) A CROSS JOIN range(100000000) B "
            + "GROUP BY (A.id - B.id)",
            run_async=True,
        )

        async def fetch_really_long_query():
            try:
                return await operation.fetch_all()
            except aiosql.OperationStateError as e:
                print("It looks like this query was cancelled: {}".format(e))

        fetch_task = asyncio.create_task(fetch_really_long_query())

        print("\n Waiting 15 seconds before canceling")
        await asyncio.sleep(15)

        print("\n Cancelling the operation. This can take a few seconds.")
        await operation.cancel()
        await asyncio.wait_for(fetch_task, 5)
        print("\n The previous command was successfully canceled")

        # The session can still run new statements
        operation = await session.execute_statement("SELECT * FROM range(3)")
        print(await operation.fetch_all())


asyncio.run(main())
