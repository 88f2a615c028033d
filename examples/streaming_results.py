import asyncio
import os

from databricks import aiosql

"""
`to_stream()` reads results in a background task into a bounded queue, so a
slow consumer holds the download back instead of buffering the whole result.
"""


async def main():
    async with aiosql.Client() as client:
        await client.connect(
            server_hostname=os.getenv("DATABRICKS_SERVER_HOSTNAME"),
            http_path=os.getenv("DATABRICKS_HTTP_PATH"),
            access_token=os.getenv("DATABRICKS_TOKEN"),
        )
        session = await client.open_session()
        operation = await session.execute_statement("SELECT * FROM range(1000000)")

        total = 0
        async with operation.to_stream(mode="chunks", auto_close=True) as stream:
            async for chunk in stream:
                total += len(chunk)
                print("received {} rows, {} so far".format(len(chunk), total))
                await asyncio.sleep(0.1)


asyncio.run(main())
