"""
Housekeeping Cog - Background Tasks

Runs the challenge expiry machinery:
- the short-interval sweep and the multi-hour scheduled sweep
- the keyspace expiry listener (when the Redis server publishes expiry events)
- the one-time fast-store sync from the ladder at startup
"""

import asyncio
from typing import Optional

from discord.ext import commands, tasks
from redis.exceptions import RedisError

from ladder_bot.config import Config
from ladder_bot.utils.exceptions import LadderError
from ladder_bot.utils.logger import setup_logger
from ladder_bot.utils.redis_utils import RedisUtils

logger = setup_logger(__name__)

LISTENER_RETRY_SECONDS = 30


class HousekeepingCog(commands.Cog):
    """Background expiry and sync tasks"""

    def __init__(self, bot):
        self.bot = bot
        self.listener_task: Optional[asyncio.Task] = None
        self._started = False
        self.logger = logger

        self.sweep_expired.change_interval(minutes=Config.SWEEP_INTERVAL_MINUTES)
        self.scheduled_sweep.change_interval(hours=Config.SCHEDULED_SWEEP_HOURS)

    @commands.Cog.listener()
    async def on_ready(self):
        """Sync the fast store and start background tasks once the bot is ready"""
        if self._started:
            return
        if self.bot.reconciler is None:
            self.logger.error("HousekeepingCog: ladder services not available, background tasks not started")
            return
        self._started = True

        await self.startup_sync()

        self.sweep_expired.start()
        self.scheduled_sweep.start()
        if Config.ENABLE_EXPIRY_EVENTS and self.bot.redis is not None:
            self.listener_task = asyncio.create_task(self._listen_forever())
        self.logger.info("HousekeepingCog: Background tasks started")

    def cog_unload(self):
        """Stop background tasks when cog is unloaded"""
        self.sweep_expired.cancel()
        self.scheduled_sweep.cancel()
        if self.listener_task:
            self.listener_task.cancel()
        self.logger.info("HousekeepingCog: Background tasks stopped")

    async def startup_sync(self):
        """Recreate missing fast-store records for challenges already on the ladder"""
        try:
            report = await self.bot.reconciler.sync_existing_challenges()
            self.logger.info(
                f"Startup sync: {len(report.synced)} challenges synced, "
                f"{len(report.already_present)} already present, "
                f"{report.orphaned_locks_removed} orphaned locks removed"
            )
        except LadderError as e:
            # The sweep still covers expiry if the sync could not run
            self.logger.error(f"Startup sync failed: {e}", exc_info=True)

    @tasks.loop(minutes=5)
    async def sweep_expired(self):
        """Frequent sweep so expiry works without keyspace events"""
        try:
            report = await self.bot.reconciler.sweep_expired_challenges(announce=True)
            if report.nullified:
                self.logger.info(f"Sweep nullified {len(report.nullified)} challenge pairs")
        except Exception as e:
            self.logger.error(f"Error in challenge sweep task: {e}", exc_info=True)

    @tasks.loop(hours=6)
    async def scheduled_sweep(self):
        """Scheduled sweep plus player lock cleanup"""
        try:
            report = await self.bot.reconciler.sweep_expired_challenges(announce=True)
            removed = await self.bot.challenge_store.cleanup_orphaned_player_locks()
            self.logger.info(
                f"Scheduled sweep: {len(report.nullified)} nullified, {len(report.parse_issues)} parse issues, "
                f"{len(report.integrity_faults)} integrity faults, {removed} orphaned locks removed"
            )
        except Exception as e:
            self.logger.error(f"Error in scheduled sweep task: {e}", exc_info=True)

    @sweep_expired.before_loop
    async def before_sweep(self):
        """Wait for bot to be ready before starting the sweep"""
        await self.bot.wait_until_ready()

    @scheduled_sweep.before_loop
    async def before_scheduled_sweep(self):
        await self.bot.wait_until_ready()

    async def _listen_forever(self):
        """Keep the expiry subscription alive; reconnects after failures"""
        redis_client = self.bot.redis
        if not await RedisUtils.enable_expiry_notifications(redis_client):
            self.logger.warning("Expiry events may be disabled on the server; relying on the sweep")

        channel = RedisUtils.expired_channel(redis_client)
        while True:
            pubsub = redis_client.pubsub()
            try:
                await self.bot.reconciler.listen_for_expirations(pubsub, channel)
            except asyncio.CancelledError:
                raise
            except RedisError as e:
                self.logger.error(f"Expiry listener disconnected: {e}; retrying in {LISTENER_RETRY_SECONDS}s")
            finally:
                await pubsub.aclose()
            await asyncio.sleep(LISTENER_RETRY_SECONDS)


async def setup(bot):
    await bot.add_cog(HousekeepingCog(bot))
