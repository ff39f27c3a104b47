"""
Background maintenance workers.
"""
import os
import asyncio
import logging
from .game_invites import InviteMachine, invites

logger = logging.getLogger(__name__)

class BaseWorker:
    """Runs ``run_once`` every ``interval`` seconds until stopped"""

    def __init__(self, interval: float):
        self.interval = interval
        self.running = False
        self.processed_count = 0
        self.error_count = 0
        self.task = None

    async def run_once(self):
        raise NotImplementedError

    async def loop(self):
        self.running = True
        logger.info(f"Starting {self.__class__.__name__} (every {self.interval}s)")
        while self.running:
            try:
                self.processed_count += await self.run_once() or 0
            except Exception as e:
                logger.error(f"Worker {self.__class__.__name__} error: {str(e)}")
                self.error_count += 1
            await asyncio.sleep(self.interval)

    def start(self):
        if self.task is None:
            self.task = asyncio.create_task(self.loop())

    async def stop(self):
        self.running = False
        logger.info(f"Stopping {self.__class__.__name__}")
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

class StaleInviteSweeper(BaseWorker):
    """Guaranteed expiry of abandoned pending invites.

    Without it, stale invites only go away when one of the players cancels an invite.
    """

    def __init__(self, machine: InviteMachine = invites, interval: float = None):
        super().__init__(interval or float(os.getenv('INVITE_SWEEP_INTERVAL_SECONDS', '3600')))
        self.machine = machine

    async def run_once(self) -> int:
        removed = await self.machine.sweep_stale()
        if removed:
            logger.info(f"Swept {removed} stale game invites")
        return removed

sweeper = StaleInviteSweeper()

def sweeper_enabled() -> bool:
    return os.getenv('INVITE_SWEEPER_ENABLED') == '1'
