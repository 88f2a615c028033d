import asyncio
import os

from databricks import aiosql


async def main():
    async with aiosql.Client() as client:
        await client.connect(
            server_hostname=os.getenv("DATABRICKS_SERVER_HOSTNAME"),
            http_path=os.getenv("DATABRICKS_HTTP_PATH"),
            access_token=os.getenv("DATABRICKS_TOKEN"),
        )

        async with await client.open_session() as session:
            async with await session.execute_statement("SELECT * FROM range(10)") as operation:
                result = await operation.fetch_all()

                for row in result:
                    print(row)


asyncio.run(main())
