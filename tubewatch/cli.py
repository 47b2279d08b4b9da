import asyncio
import argparse
import httpx
from tubewatch.config.settings import settings
from tubewatch.orchestration.service import build_client, configure_logging, main as service_main


async def _oneshot(reference: str):
    from tubewatch.youtube.channels import ChannelNotFoundError, ChannelResolver
    from tubewatch.youtube.live_detector import LiveDetector

    async with build_client() as client:
        try:
            channel = await ChannelResolver(client).lookup(reference)
        except ChannelNotFoundError:
            print(f"Channel not found: {reference}")
            return
        live = await LiveDetector(client).probe(channel.channel_id)
    if live is None:
        print(f"Channel {channel.title} ({channel.channel_id}): not live")
    else:
        print(f"Channel {channel.title} ({channel.channel_id}) live: {live.video_id} {live.title!r}")


def _base_url() -> str:
    return f"http://127.0.0.1:{settings.api_port}"


async def _ps():
    async with httpx.AsyncClient(timeout=5) as client:
        status = (await client.get(f"{_base_url()}/system/status")).json()
        live = (await client.get(f"{_base_url()}/videos/live")).json()
    state = "running" if status['running'] else "stopped"
    print(f"Monitor {state}, poll interval: {status['interval_sec']}s")
    for c in status['channels']:
        print(f"Channel={c['channel_id']} Title={c['title']!r} LastChecked={c['last_checked_at']}")
    for v in live:
        print(f"Live Channel={v['channel_id']} Video={v['video_id']} Title={v['title']!r}")


async def _add_channel(reference: str):
    async with httpx.AsyncClient(timeout=60) as client:
        resp = await client.post(f"{_base_url()}/channels", json={"url": reference})
        print(resp.json())


async def _remove_channel(channel_id: str, hard: bool):
    async with httpx.AsyncClient(timeout=5) as client:
        resp = await client.delete(f"{_base_url()}/channels/{channel_id}", params={"hard": hard})
        print("removed" if resp.status_code == 204 else resp.json())


def main():
    parser = argparse.ArgumentParser(description="YouTube channel monitor")
    parser.add_argument("command", nargs="?", default="run", choices=["run", "check", "add", "remove", "ps"], help="run service or talk to a running one")
    parser.add_argument("arg", nargs="?", help="channel id, handle or url")
    parser.add_argument("--hard", action="store_true", help="delete the channel and its history on remove")
    args = parser.parse_args()

    if args.command in ("check", "add", "remove") and not args.arg:
        print("Missing channel")
        return
    if args.command == "check":
        configure_logging(settings.log_format)
        asyncio.run(_oneshot(args.arg))
    elif args.command == "ps":
        asyncio.run(_ps())
    elif args.command == "add":
        asyncio.run(_add_channel(args.arg))
    elif args.command == "remove":
        asyncio.run(_remove_channel(args.arg, args.hard))
    else:
        # Start the long-running service (monitor + API server)
        asyncio.run(service_main())
if __name__ == "__main__":
    main()
