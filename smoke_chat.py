import asyncio
import json
import sys

import websockets


async def smoke(room_id: str = "smoke-room", name: str = "smoke-bot"):
    # Start the server first: python -m roomrelay.main
    async with websockets.connect(f"ws://localhost:8000/ws?room={room_id}&name={name}") as ws:
        # init first (includes history)
        init = json.loads(await ws.recv())
        print(f"Init: {init}")
        if init.get("type") == "error":
            return

        # Send a message
        await ws.send(json.dumps({
            "type": "message",
            "text": "Hello from Python!"
        }))

        # Expect the ack
        ack = await ws.recv()
        print(f"Received: {ack}")

        await ws.send(json.dumps({"type": "ping"}))
        print(f"Received: {await ws.recv()}")


if __name__ == "__main__":
    asyncio.run(smoke(*sys.argv[1:3]))
