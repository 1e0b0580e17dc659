"""Drive two signaling clients through a join and an offer/answer exchange."""
from __future__ import annotations

import asyncio
import json
import os

import httpx
import websockets

BASE_URL = os.environ.get("SIGNALING_BASE_URL", "http://localhost:8000")
WS_URL = BASE_URL.replace("http", "ws", 1) + "/api/rtc/signaling"


async def receive_until(ws, event_type: str) -> dict:
	"""Read frames until one of ``event_type`` arrives; errors abort the run."""

	while True:
		message = json.loads(await ws.recv())
		if message["type"] == "error":
			raise RuntimeError(f"{message['code']}: {message['message']}")
		if message["type"] == event_type:
			return message


async def join(ws, room_id: str, name: str) -> str:
	ready = await receive_until(ws, "session-ready")
	await ws.send(json.dumps({"type": "join", "room_id": room_id, "name": name}))
	joined = await receive_until(ws, "room-joined")
	print(f"{name} joined {room_id} as {joined['participant']['role']}")
	return ready["session_id"]


async def main() -> None:
	async with httpx.AsyncClient(base_url=BASE_URL) as client:
		response = await client.post("/api/rooms", json={"created_by": "smoke-test"})
		response.raise_for_status()
		room_id = response.json()["room_id"]
		print(f"Created room {room_id}")

		async with websockets.connect(WS_URL) as alice, websockets.connect(WS_URL) as bob:
			alice_id = await join(alice, room_id, "Alice")
			bob_id = await join(bob, room_id, "Bob")

			await alice.send(json.dumps({"type": "offer", "target": bob_id, "offer": {"type": "offer", "sdp": "v=0"}}))
			offer = await receive_until(bob, "offer")
			print(f"Bob received offer on {offer['connection_id']}")

			await bob.send(json.dumps({"type": "answer", "target": alice_id, "answer": {"type": "answer", "sdp": "v=0"}}))
			await receive_until(alice, "answer")
			print("Alice received answer")

			snapshot = await client.get(f"/api/rtc/rooms/{room_id}")
			snapshot.raise_for_status()
			print(json.dumps(snapshot.json(), indent=2))

			await alice.send(json.dumps({"type": "send-message", "message": "hello from the smoke test"}))
			chat = await receive_until(bob, "new-message")
			print(f"Bob received chat from {chat['name']}: {chat['message']}")


if __name__ == "__main__":
	asyncio.run(main())
