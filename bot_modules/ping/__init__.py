"""
Ping Module

Example GuildKit module: a literal command, a pattern command and an
internal event listener.
"""

import re
import time

from services import Module, Parameter, PermissionLevel

class Ping(Module):
    name = "Ping"
    description = "Latency check and module statistics"
    author = "GuildKit"

    def init(self):
        self.pings = 0
        self.loaded_at = time.monotonic()

        self.register_parameter('ping.reply', Parameter(
            description='Text sent in reply to ping',
            type=str,
            default='Pong!'
        ))

        @self.command('ping', description='Check that the bot responds')
        async def ping(ctx):
            self.pings += 1
            started = time.monotonic()
            reply = await self.settings.get(ctx.guild.id, 'ping.reply') if ctx.guild else 'Pong!'
            message = await ctx.reply(reply)
            elapsed = (time.monotonic() - started) * 1000
            self.logger.debug(f"Replied to ping in {elapsed:.0f}ms")
            return message

        @self.command(re.compile(r'^(?:uptime|how long)\b', re.IGNORECASE),
                      description='Time since this module was loaded')
        async def uptime(ctx):
            await ctx.reply(f"Up for {time.monotonic() - self.loaded_at:.0f} seconds")

        @self.command('pingstats', permission_level=PermissionLevel.ADMIN)
        async def pingstats(ctx):
            await ctx.reply(f"{self.pings} pings since load")

        self.register_event('module.loaded', self.on_module_loaded)

    def on_module_loaded(self, module):
        self.logger.info(f"Module '{module.id}' loaded")

    def shutdown(self):
        self.logger.info(f"Answered {self.pings} pings")
