from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from typing import Dict, Optional, Set, Tuple

import discord
from discord import app_commands
from discord.ext import commands

from application.blackjack import ACTIONS, BlackjackEngine, BlackjackResolution
from application.casino import ROULETTE_BET_TYPES, ROULETTE_WHEEL, CasinoService
from application.multiplier import MultiplierManager
from application.services import (
    BalanceService,
    ExternalContext,
    adjust_points,
    award_vouch,
    recount_vouches,
    wipe_vouches,
)
from domain.models import BlackjackGame
from domain.repositories import StorageError
from infrastructure.config import BotConfig
from interfaces.discord import rendering
from interfaces.discord.filters import (
    find_provider_role,
    has_image,
    is_casino_channel,
    is_vouch_channel,
    mentions_role_holder,
    mentions_role_holder_with_fetch,
)


logger = logging.getLogger(__name__)

GENERIC_FAILURE = "❌ Something went wrong. Please try again later."
NOT_ADMIN = "❌ You do not have permission to use this command."
GUILD_ONLY = "This command can only be used in a server."
CASINO_ONLY = "Please use this in the #casino channel."


def _build_external_context(
    user: discord.abc.User,
    permissions: Optional[discord.Permissions] = None,
) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    is_admin = bool(permissions and (permissions.administrator or permissions.manage_guild))
    return ExternalContext(
        user_id=str(user.id),
        display_name=user.name,
        is_admin=is_admin,
    )


async def _send_ephemeral(interaction: discord.Interaction, content: str) -> None:
    """Reply or follow up, whichever is still possible. Delivery is best-effort."""

    try:
        if interaction.response.is_done():
            await interaction.followup.send(content, ephemeral=True)
        else:
            await interaction.response.send_message(content, ephemeral=True)
    except discord.HTTPException:
        logger.debug("Could not deliver reply to %s", interaction.user.id, exc_info=True)


async def _follow_up_balance(interaction: discord.Interaction, balance: int) -> None:
    await _send_ephemeral(interaction, f"Current balance: {balance} vouch points.")


class BlackjackView(discord.ui.View):
    """Hit / Stand / Double / Surrender buttons for one live hand."""

    def __init__(self, bot_state: "_BotState", game: BlackjackGame) -> None:
        super().__init__(timeout=None)
        self._state = bot_state
        self._owner_id = game.user_id

        styles = {
            "hit": discord.ButtonStyle.primary,
            "stand": discord.ButtonStyle.secondary,
            "double": discord.ButtonStyle.success,
            "surrender": discord.ButtonStyle.danger,
        }
        for action in ACTIONS:
            if action == "double" and not game.can_double:
                continue
            button = discord.ui.Button(
                label=action.capitalize(),
                style=styles[action],
                custom_id=f"bj_{action}:{game.user_id}",
            )
            button.callback = self._make_callback(action)
            self.add_item(button)

    def _make_callback(self, action: str):
        async def callback(interaction: discord.Interaction) -> None:
            await self._state.handle_blackjack_action(interaction, self._owner_id, action)

        return callback


class _BotState:
    """
    Process-scoped state of the Discord layer: the services plus the
    message handles of live blackjack tables.
    """

    def __init__(
        self,
        bot: commands.Bot,
        config: BotConfig,
        balances: BalanceService,
        multiplier: MultiplierManager,
        blackjack: BlackjackEngine,
        casino: CasinoService,
    ) -> None:
        self.bot = bot
        self.config = config
        self.balances = balances
        self.multiplier = multiplier
        self.blackjack = blackjack
        self.casino = casino
        self.table_messages: Dict[str, discord.InteractionMessage] = {}
        self.background_tasks: Set[asyncio.Task] = set()

    def spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self.background_tasks.add(task)
        task.add_done_callback(self.background_tasks.discard)

    def announce(self, channel_id: str, text: str) -> None:
        self.spawn(self._announce(channel_id, text))

    async def _announce(self, channel_id: str, text: str) -> None:
        try:
            channel = self.bot.get_channel(int(channel_id)) or await self.bot.fetch_channel(int(channel_id))
            await channel.send(text, allowed_mentions=discord.AllowedMentions(everyone=True))
        except (discord.HTTPException, ValueError, AttributeError):
            logger.warning("Could not announce in channel %s", channel_id, exc_info=True)

    async def on_blackjack_timeout(self, resolution: BlackjackResolution) -> None:
        message = self.table_messages.pop(resolution.user_id, None)
        if message is None:
            return
        try:
            await message.edit(embed=rendering.blackjack_result_embed(resolution), view=None)
        except discord.HTTPException:
            logger.debug("Could not edit timed-out blackjack table", exc_info=True)

    async def handle_blackjack_action(
        self,
        interaction: discord.Interaction,
        owner_id: str,
        action: str,
    ) -> None:
        try:
            result = self.blackjack.act(str(interaction.user.id), owner_id, action)
        except StorageError:
            logger.exception("Blackjack %s failed for %s", action, owner_id)
            await _send_ephemeral(interaction, "❌ Error processing action.")
            return

        if not result.success:
            await _send_ephemeral(interaction, result.error_message or "Action rejected.")
            return

        try:
            if result.resolution is not None:
                self.table_messages.pop(owner_id, None)
                await interaction.response.edit_message(
                    embed=rendering.blackjack_result_embed(result.resolution),
                    view=None,
                )
                await _follow_up_balance(interaction, result.resolution.balance)
            else:
                await interaction.response.edit_message(
                    embed=rendering.blackjack_embed(result.game, note="You hit."),
                    view=BlackjackView(self, result.game),
                )
        except discord.HTTPException:
            logger.debug("Could not update blackjack table for %s", owner_id, exc_info=True)


def create_discord_bot(
    config: BotConfig,
    balances: BalanceService,
    multiplier: MultiplierManager,
    blackjack: BlackjackEngine,
    casino: CasinoService,
) -> commands.Bot:
    """
    Configure and return a Discord bot wired to the application layer:
    vouch awards, balances and leaderboards, the casino games and the
    admin commands.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True

    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)
    state = _BotState(bot, config, balances, multiplier, blackjack, casino)
    multiplier.set_announcer(state.announce)
    blackjack.set_timeout_listener(state.on_blackjack_timeout)
    synced = False

    def require_admin(interaction: discord.Interaction) -> Optional[str]:
        if interaction.guild is None:
            return GUILD_ONLY
        permissions = interaction.permissions
        if not (permissions.administrator or permissions.manage_guild):
            return NOT_ADMIN
        return None

    @bot.event
    async def on_ready():
        nonlocal synced
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)
        await bot.change_presence(
            activity=discord.Activity(type=discord.ActivityType.watching, name="for pictures in #vouch")
        )
        try:
            multiplier.get_multiplier()
            multiplier.schedule_reversion_if_needed()
        except StorageError:
            logger.exception("Could not restore the multiplier state")

        if not synced:
            try:
                commands_synced = await bot.tree.sync()
                synced = True
                logger.info("Registered %d application command(s)", len(commands_synced))
            except discord.HTTPException:
                logger.exception("Error registering commands")

    @bot.event
    async def on_message(message: discord.Message):
        if message.author.bot or message.guild is None:
            return
        if not is_vouch_channel(message.channel) or not has_image(message):
            return

        role = find_provider_role(message.guild, config.provider_role_id, config.provider_role_name)
        if role is None:
            logger.warning("Provider role not found. Set PROVIDER_ROLE_ID or PROVIDER_ROLE_NAME.")
            return
        if not mentions_role_holder(message, role):
            return

        try:
            award = award_vouch(_build_external_context(message.author), balances, multiplier)
        except StorageError:
            logger.exception("Could not award vouch points to %s", message.author.id)
            return

        embed = rendering.vouch_award_embed(message.author.name, award, message.channel.name)
        for send in (message.reply, message.author.send):
            try:
                await send(embed=embed)
            except discord.HTTPException:
                logger.debug("Could not deliver vouch award notice", exc_info=True)

    @bot.tree.command(name="vouchpoints", description="Check your or someone else's vouch points")
    @app_commands.describe(user="The user to check vouch points for")
    async def vouchpoints_cmd(interaction: discord.Interaction, user: Optional[discord.User] = None):
        target = user or interaction.user
        try:
            points = balances.get_balance(str(target.id))
        except StorageError:
            logger.exception("Could not read balance of %s", target.id)
            await _send_ephemeral(interaction, "❌ Error retrieving vouch points!")
            return

        embed = discord.Embed(
            color=discord.Color.blue(),
            title="📊 Vouch Points",
            description=f"{target.name} has **{points}** vouch points!",
            timestamp=discord.utils.utcnow(),
        )
        embed.set_thumbnail(url=target.display_avatar.url)
        await interaction.response.send_message(embed=embed)

    async def _send_leaderboard(interaction: discord.Interaction) -> None:
        try:
            rows = balances.balance_leaderboard(10)
        except StorageError:
            logger.exception("Could not read leaderboard")
            await _send_ephemeral(interaction, "❌ Error retrieving leaderboard!")
            return

        if not rows:
            await _send_ephemeral(interaction, "📊 No vouch points have been awarded yet!")
            return

        embed = discord.Embed(
            color=discord.Color.gold(),
            title="🏆 Vouch Points Leaderboard",
            description=rendering.leaderboard_text(rows),
            timestamp=discord.utils.utcnow(),
        )
        await interaction.response.send_message(embed=embed)

        for row in rows:
            if not row.username:
                state.spawn(_backfill_username(row.user_id))

    async def _backfill_username(user_id: str) -> None:
        try:
            user = await bot.fetch_user(int(user_id))
            balances.backfill_username(user_id, user.name)
        except (discord.HTTPException, ValueError, StorageError):
            logger.debug("Username backfill failed for %s", user_id, exc_info=True)

    @bot.tree.command(name="leaderboard", description="View the vouch points leaderboard")
    async def leaderboard_cmd(interaction: discord.Interaction):
        await _send_leaderboard(interaction)

    @bot.tree.command(name="vouchleaderboard", description="View the vouch points leaderboard")
    async def vouchleaderboard_cmd(interaction: discord.Interaction):
        await _send_leaderboard(interaction)

    @bot.tree.command(name="casinoleaderboard", description="View casino net winners leaderboard")
    async def casinoleaderboard_cmd(interaction: discord.Interaction):
        try:
            rows = balances.casino_leaderboard(10)
        except StorageError:
            logger.exception("Ledger query error")
            await _send_ephemeral(interaction, "❌ Error.")
            return

        if not rows:
            await _send_ephemeral(interaction, "No casino activity yet.")
            return

        embed = discord.Embed(
            color=discord.Color.gold(),
            title="🏆 Casino Leaderboard",
            description=rendering.leaderboard_text(rows, suffix="", numbered=False),
        )
        await interaction.response.send_message(embed=embed)

    @bot.tree.command(name="blackjack", description="Play blackjack against the dealer")
    @app_commands.describe(amount="Bet amount (>=1)")
    async def blackjack_cmd(interaction: discord.Interaction, amount: int):
        if not is_casino_channel(interaction.channel, config.casino_channel_id):
            await _send_ephemeral(interaction, CASINO_ONLY)
            return

        try:
            result = blackjack.start(str(interaction.user.id), interaction.user.name, amount)
        except StorageError:
            logger.exception("Blackjack start error")
            await _send_ephemeral(interaction, "❌ Failed to start game.")
            return

        if not result.success:
            await _send_ephemeral(interaction, result.error_message or "Could not start game.")
            return

        game = result.game
        await interaction.response.send_message(
            embed=rendering.blackjack_embed(game, note="Your move: Hit, Stand, Double, or Surrender."),
            view=BlackjackView(state, game),
        )
        try:
            message = await interaction.original_response()
        except discord.HTTPException:
            logger.debug("Could not fetch blackjack table message", exc_info=True)
            return
        # The hand may already be over if the player acted very quickly.
        if blackjack.get_game(game.user_id) is game:
            state.table_messages[game.user_id] = message

    @bot.tree.command(name="roulette", description="Spin the roulette wheel")
    @app_commands.describe(
        type="Bet type (red, black, even, odd, low, high, number)",
        amount="Bet amount (>=1)",
        number="Number (0-36) required for type=number",
    )
    @app_commands.choices(
        type=[app_commands.Choice(name=bet_type, value=bet_type) for bet_type in ROULETTE_BET_TYPES]
    )
    async def roulette_cmd(
        interaction: discord.Interaction,
        type: str,
        amount: int,
        number: Optional[int] = None,
    ):
        if not is_casino_channel(interaction.channel, config.casino_channel_id):
            await _send_ephemeral(interaction, CASINO_ONLY)
            return

        try:
            result = casino.play_roulette(
                str(interaction.user.id), interaction.user.name, type, amount, number
            )
        except StorageError:
            logger.exception("Roulette error")
            await _send_ephemeral(interaction, "❌ Error playing roulette.")
            return

        if not result.success:
            await _send_ephemeral(interaction, result.error_message or "Bet rejected.")
            return

        try:
            index = ROULETTE_WHEEL.index(result.result)
            await interaction.response.send_message(embed=rendering.roulette_frame_embed(index - 6))
            for offset, pause in zip(range(-5, 1), (0.1, 0.12, 0.16, 0.2, 0.26, 0.32)):
                await asyncio.sleep(pause)
                await interaction.edit_original_response(
                    embed=rendering.roulette_frame_embed(index + offset)
                )
            await interaction.edit_original_response(embed=rendering.roulette_result_embed(result))
        except discord.HTTPException:
            logger.debug("Could not render roulette spin", exc_info=True)
        await _follow_up_balance(interaction, result.balance)

    @bot.tree.command(name="slots", description="Pull the lever on slots")
    @app_commands.describe(amount="Bet amount (>=1)")
    async def slots_cmd(interaction: discord.Interaction, amount: int):
        if not is_casino_channel(interaction.channel, config.casino_channel_id):
            await _send_ephemeral(interaction, CASINO_ONLY)
            return

        try:
            result = casino.play_slots(str(interaction.user.id), interaction.user.name, amount)
        except StorageError:
            logger.exception("Slots error")
            await _send_ephemeral(interaction, "❌ Error playing slots.")
            return

        if not result.success:
            await _send_ephemeral(interaction, result.error_message or "Bet rejected.")
            return

        try:
            await interaction.response.send_message(
                embed=rendering.slots_frame_embed("🌀 🌀 🌀", "🎰 Spinning…")
            )
            await asyncio.sleep(0.5)
            await interaction.edit_original_response(
                embed=rendering.slots_frame_embed(f"{result.reels[0]} 🌀 🌀", "🎰 Reels stopping…")
            )
            await asyncio.sleep(0.5)
            await interaction.edit_original_response(embed=rendering.slots_result_embed(result))
        except discord.HTTPException:
            logger.debug("Could not render slots spin", exc_info=True)
        await _follow_up_balance(interaction, result.balance)

    async def _adjust(interaction: discord.Interaction, user: discord.User, amount: int, add: bool) -> None:
        problem = require_admin(interaction)
        if problem:
            await _send_ephemeral(interaction, problem)
            return

        try:
            result = adjust_points(
                _build_external_context(interaction.user, interaction.permissions),
                str(user.id),
                user.name,
                amount,
                add,
                balances,
            )
        except StorageError:
            logger.exception("Could not adjust points of %s", user.id)
            await _send_ephemeral(interaction, "❌ Error updating points.")
            return

        if not result.success:
            await _send_ephemeral(interaction, result.error_message or "Provide a user and a positive amount.")
            return

        verb = "Set" if result.created else "Updated"
        await interaction.response.send_message(f"{verb} {user.name}'s points to {result.new_balance}.")

    @bot.tree.command(name="addpoints", description="Admin: Add points to a user")
    @app_commands.describe(user="User to modify", amount="Amount to add")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def addpoints_cmd(interaction: discord.Interaction, user: discord.User, amount: int):
        await _adjust(interaction, user, amount, add=True)

    @bot.tree.command(name="removepoints", description="Admin: Remove points from a user")
    @app_commands.describe(user="User to modify", amount="Amount to remove")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def removepoints_cmd(interaction: discord.Interaction, user: discord.User, amount: int):
        await _adjust(interaction, user, amount, add=False)

    @bot.tree.command(name="setmultiplier", description="Admin: Set global vouch multiplier (e.g., 2 for 2x)")
    @app_commands.describe(value="Multiplier value (>=1)", duration_minutes="Duration in minutes (optional)")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def setmultiplier_cmd(
        interaction: discord.Interaction,
        value: float,
        duration_minutes: Optional[int] = None,
    ):
        problem = require_admin(interaction)
        if problem:
            await _send_ephemeral(interaction, problem)
            return

        try:
            new_value = multiplier.set_multiplier(
                value,
                duration_minutes,
                announce_channel_id=str(interaction.channel_id),
            )
        except StorageError:
            logger.exception("Could not set multiplier")
            await _send_ephemeral(interaction, GENERIC_FAILURE)
            return

        if duration_minutes and duration_minutes > 0:
            content = f"@everyone Vouch multiplier is now {new_value}x for {duration_minutes} minute(s)!"
        else:
            content = f"@everyone Vouch multiplier is now {new_value}x until further notice!"
        await interaction.response.send_message(
            content,
            allowed_mentions=discord.AllowedMentions(everyone=True),
        )

    @bot.tree.command(name="multiplierstatus", description="Show current vouch multiplier")
    async def multiplierstatus_cmd(interaction: discord.Interaction):
        try:
            status = multiplier.status()
        except StorageError:
            logger.exception("Could not read multiplier")
            await _send_ephemeral(interaction, GENERIC_FAILURE)
            return

        content = f"Current vouch multiplier: {status.value}x"
        remaining = status.remaining(time.time())
        if remaining:
            content += f" (ends in {max(1, round(remaining / 60))} minute(s))"
        await interaction.response.send_message(content)

    @bot.tree.command(name="resetmultiplier", description="Admin: Reset multiplier to 1x")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def resetmultiplier_cmd(interaction: discord.Interaction):
        problem = require_admin(interaction)
        if problem:
            await _send_ephemeral(interaction, problem)
            return

        try:
            multiplier.reset_multiplier()
        except StorageError:
            logger.exception("Could not reset multiplier")
            await _send_ephemeral(interaction, GENERIC_FAILURE)
            return
        await interaction.response.send_message("✅ Multiplier reset to 1x.")

    @bot.tree.command(name="wipevouches", description="Admin: Wipe all vouch points (irreversible)")
    @app_commands.describe(confirm='Type "yes" to confirm')
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def wipevouches_cmd(interaction: discord.Interaction, confirm: str):
        problem = require_admin(interaction)
        if problem:
            await _send_ephemeral(interaction, problem)
            return

        try:
            result = wipe_vouches(
                _build_external_context(interaction.user, interaction.permissions),
                confirm,
                balances,
            )
        except StorageError:
            logger.exception("Database error wiping vouches")
            await _send_ephemeral(interaction, "❌ Error wiping vouch points.")
            return

        if not result.success:
            await _send_ephemeral(interaction, result.error_message or "Wipe cancelled.")
            return
        await interaction.response.send_message("🧹 All vouch points have been wiped.")

    @bot.tree.command(
        name="recountvouches",
        description="Admin: Recount all vouches in vouch channels and rebuild points",
    )
    @app_commands.describe(channel="Specific vouch channel to scan (optional)")
    @app_commands.default_permissions(administrator=True)
    @app_commands.guild_only()
    async def recountvouches_cmd(
        interaction: discord.Interaction,
        channel: Optional[discord.TextChannel] = None,
    ):
        problem = require_admin(interaction)
        if problem:
            await _send_ephemeral(interaction, problem)
            return

        await interaction.response.defer(ephemeral=True)
        guild = interaction.guild
        role = find_provider_role(guild, config.provider_role_id, config.provider_role_name)
        if role is None:
            await interaction.edit_original_response(
                content="Provider role not found. Set PROVIDER_ROLE_ID or PROVIDER_ROLE_NAME."
            )
            return

        channels = [channel] if channel is not None else [
            ch for ch in guild.text_channels if is_vouch_channel(ch)
        ]
        if not channels:
            await interaction.edit_original_response(content="No vouch channels found to scan.")
            return

        counts: Dict[str, int] = defaultdict(int)
        names: Dict[str, str] = {}
        scanned = 0
        try:
            for ch in channels:
                async for message in ch.history(limit=None):
                    scanned += 1
                    if message.author.bot or not has_image(message):
                        continue
                    if not await mentions_role_holder_with_fetch(message, role):
                        continue
                    author_id = str(message.author.id)
                    counts[author_id] += 1
                    names[author_id] = message.author.name
        except discord.HTTPException:
            logger.exception("Recount error while reading history")
            await interaction.edit_original_response(content="❌ Error during recount. Check logs.")
            return

        vouch_counts: Dict[str, Tuple[int, Optional[str]]] = {
            user_id: (count, names.get(user_id)) for user_id, count in counts.items()
        }
        try:
            result = recount_vouches(
                _build_external_context(interaction.user, interaction.permissions),
                vouch_counts,
                balances,
            )
        except StorageError:
            logger.exception("Recount error")
            await interaction.edit_original_response(content="❌ Error during recount. Check logs.")
            return

        if not result.success:
            await interaction.edit_original_response(content=result.error_message)
            return

        logger.info(
            "Recount by %s: %d message(s), %d channel(s), %d user(s)",
            interaction.user.id,
            scanned,
            len(channels),
            result.accounts,
        )
        await interaction.edit_original_response(
            content=(
                f"✅ Recount complete. Scanned {scanned} messages across {len(channels)} channel(s). "
                f"Updated {result.accounts} user(s)."
            )
        )

    @bot.tree.error
    async def on_app_command_error(interaction: discord.Interaction, error: app_commands.AppCommandError):
        logger.error("Command error in %s", interaction.command and interaction.command.name, exc_info=error)
        await _send_ephemeral(interaction, GENERIC_FAILURE)

    return bot
