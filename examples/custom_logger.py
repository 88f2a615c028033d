import asyncio
import logging
import os

from databricks import aiosql


logger = logging.getLogger("databricks.aiosql")
logger.setLevel(logging.DEBUG)
fh = logging.FileHandler("aiosqllogs.log")
fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(process)d %(name)s %(message)s"))
fh.setLevel(logging.DEBUG)
logger.addHandler(fh)


async def main():
    config = aiosql.ClientConfig(use_cloud_fetch=True, cloud_fetch_concurrent_downloads=2)
    async with aiosql.Client(config) as client:
        await client.connect(
            server_hostname=os.getenv("DATABRICKS_SERVER_HOSTNAME"),
            http_path=os.getenv("DATABRICKS_HTTP_PATH"),
            access_token=os.getenv("DATABRICKS_TOKEN"),
        )
        session = await client.open_session()
        query = "SELECT * FROM range(0, 20000000) AS t1 LEFT JOIN (SELECT 1) AS t2"
        print("executing query: {}".format(query))
        operation = await session.execute_statement(query)
        try:
            async for row in operation.iterate_rows(auto_close=True, max_rows=1000):
                print("row: {}".format(row))
        except aiosql.CloudFetchError as e:
            print("error: {}".format(e))


asyncio.run(main())
