"""Headless participant: join the pool, pair, optionally echo chat, and hop on "next"."""
from __future__ import annotations

import argparse
import asyncio
import logging

from roulette.client import ChatLine, RouletteClient, connect_signaling
from roulette.core.config import settings
from roulette.core.logging import configure_logging

logger = logging.getLogger("roulette_bot")


def parse_args() -> argparse.Namespace:
	parser = argparse.ArgumentParser(description=__doc__)
	parser.add_argument("--name", default="bot", help="display name shown to peers")
	parser.add_argument("--url", default=settings.signaling_url, help="signaling websocket url")
	parser.add_argument("--echo", action="store_true", help="echo every chat line back to the peer")
	parser.add_argument("--next-after", type=float, default=0.0, help="seconds before moving to the next peer (0 = stay)")
	return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
	outgoing: asyncio.Queue[str] = asyncio.Queue()

	def on_chat(line: ChatLine) -> None:
		print(f"{line.sender}: {line.text}")
		if args.echo and not line.own:
			outgoing.put_nowait(f"echo: {line.text}")

	client = RouletteClient(on_chat=on_chat)
	async with connect_signaling(client.handle_event, url=args.url) as channel:
		client.bind(channel.emit)
		await client.join(args.name)

		async def pump_chat() -> None:
			while True:
				await client.send_chat(await outgoing.get())

		async def hop() -> None:
			while True:
				await asyncio.sleep(args.next_after)
				logger.info("Moving on to the next peer")
				await client.next()

		tasks = [asyncio.create_task(pump_chat())]
		if args.next_after > 0:
			tasks.append(asyncio.create_task(hop()))
		try:
			await channel.wait_closed()
		finally:
			for task in tasks:
				task.cancel()
			await client.close()


def main() -> None:
	configure_logging(settings.log_level)
	try:
		asyncio.run(run(parse_args()))
	except KeyboardInterrupt:
		pass


if __name__ == "__main__":
	main()
