"""
MODULE OVERVIEW:
The Rich terminal feed.

WHAT IS HAPPENING HERE:
The channel streams in the background through `run_channel`; every message
and every status change lands here through a hook and the Live layout is
redrawn four times a second.
"""

from rich.live import Live
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from collections import deque
from datetime import datetime
import asyncio

from gae_channel.client.base_client import Channel
from gae_channel.shared.client_utils import run_channel

BACKEND_INFO = {
    "prod": "Production: talkgadget bind long poll, length-prefixed quasi-JSON packets.",
    "dev": "Development: plain GET long poll against the local dev server.",
}

class Visualizer:
    def __init__(self, channel: Channel, host: str):
        self.channel = channel
        self.host = host
        self.recent_messages = deque(maxlen=10)
        self.status = "INITIALIZING"
        self.timeline = deque(maxlen=5)

    def on_status_change(self, status: str):
        self.status = status
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {status}")

    def on_message(self, message: str):
        ts = datetime.now().strftime("%H:%M:%S")
        shown = message[:60] + "..." if len(message) > 60 else message
        self.recent_messages.appendleft((ts, shown, str(len(message))))

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline"),
            Layout(name="info")
        )

        color = "green" if "POLLING" in self.status else "yellow" if "CLOSED" not in self.status else "red"
        layout["header"].update(Panel(f"[{color} bold]Channel: {self.host} | Status: {self.status}[/]", style=color))

        table = Table(title="Messages", expand=True)
        table.add_column("Time", justify="left", style="cyan", no_wrap=True)
        table.add_column("Message", style="green")
        table.add_column("Bytes", style="magenta", justify="right")
        for row in self.recent_messages:
            table.add_row(*row)
        layout["left"].update(Panel(table, title="Feed"))

        stats_text = (
            f"Messages: {self.channel.messages_delivered}\n"
            f"Empty polls: {self.channel.empty_polls}\n"
            f"Poll errors: {self.channel.stats['poll_errors']}\n"
            f"Reconnects: {self.channel.reconnect_count}"
        )
        layout["stats"].update(Panel(stats_text, title="Channel Stats"))

        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        info = BACKEND_INFO.get(self.channel.protocol_name, "Custom backend")
        layout["info"].update(Panel(info, title="Backend"))

        return layout

    async def run(self, duration_s: float | None = None, retry: bool = False):
        async def message_hook(m): self.on_message(m)
        async def status_hook(s): self.on_status_change(s)

        self.channel.set_status_callback(status_hook)

        runner_task = asyncio.create_task(run_channel(self.channel, message_hook, duration_s, retry))

        with Live(self.generate_layout(), refresh_per_second=4) as live:
            while not runner_task.done():
                live.update(self.generate_layout())
                await asyncio.sleep(0.25)
            live.update(self.generate_layout())

        await runner_task
