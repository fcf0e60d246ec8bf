"""Example showing how to publish inbound records to the worker queue."""

import asyncio
import sys

from nexusflow import InboundRecord, get_transport


async def main():
    source_id = int(sys.argv[1]) if len(sys.argv) > 1 else 7

    transport = get_transport()
    await transport.connect()

    for n in range(3):
        record = InboundRecord(
            source_type="sender_app",
            source_id=source_id,
            payload={"temperature": 20 + n, "deviceId": f"sensor-{n:03d}"},
            host="guide",
        )
        await transport.publish("nexusflow:inbound", record)
        print(f"Published {record.data_id}")

    await transport.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
