from __future__ import annotations

from typing import List, Optional, Sequence

import discord

from application.blackjack import BlackjackResolution, hand_value
from application.casino import ROULETTE_WHEEL, RouletteResult, SlotsResult, roulette_color
from application.services import VouchAward
from domain.models import BlackjackGame, BlackjackOutcome, Card, LeaderboardRow


MEDALS = ("🥇", "🥈", "🥉")
COLOR_EMOJI = {"red": "🔴", "black": "⚫", "green": "🟢"}


def medal(index: int) -> str:
    return MEDALS[index] if index < len(MEDALS) else "🔸"


def signed(n: int) -> str:
    return f"+{n}" if n >= 0 else str(n)


def format_cards(cards: Sequence[Card]) -> str:
    return " ".join(f"🃏{card}" for card in cards)


def vouch_award_embed(username: str, award: VouchAward, channel_name: str) -> discord.Embed:
    plural = "" if award.awarded == 1 else "s"
    embed = discord.Embed(
        color=discord.Color.green(),
        title="🎉 Vouch Points Awarded!",
        description=(
            f"{username} earned {award.awarded} vouch point{plural} "
            "for posting an image and tagging a Provider!"
        ),
        timestamp=discord.utils.utcnow(),
    )
    embed.add_field(name="Points Awarded", value=str(award.awarded), inline=True)
    embed.add_field(name="Total Vouch Points", value=str(award.total), inline=True)
    embed.add_field(name="Channel", value=channel_name, inline=True)
    embed.set_footer(text="Keep posting pictures to earn more points!")
    return embed


def leaderboard_text(rows: List[LeaderboardRow], suffix: str = " points", numbered: bool = True) -> str:
    lines = []
    for i, row in enumerate(rows):
        rank = f"**{i + 1}.** " if numbered else ""
        value = f"{row.value}{suffix}" if suffix else signed(row.value)
        lines.append(f"{medal(i)} {rank}<@{row.user_id}> - {value}")
    return "\n".join(lines)


def blackjack_embed(game: BlackjackGame, note: Optional[str] = None) -> discord.Embed:
    """The table while the hand is live; the dealer's hole card is hidden."""

    shown = game.dealer[:1]
    hidden = " 🂠" * (len(game.dealer) - len(shown))
    lines = [
        f"**Dealer:** {format_cards(shown)}{hidden}",
        f"Total: {hand_value(shown)}?",
        "",
        f"**You:** {format_cards(game.player)}",
        f"Total: {hand_value(game.player)}",
    ]
    if note:
        lines.extend(["", note])
    embed = discord.Embed(
        color=discord.Color.dark_grey(),
        title="🃏 Blackjack",
        description="\n".join(lines),
    )
    embed.set_footer(text=f"Bet: {game.bet}")
    return embed


_RESULT_LINES = {
    BlackjackOutcome.WIN: "You won {gain} (payout {payout}).",
    BlackjackOutcome.BLACKJACK: "Blackjack! You won {gain} (payout {payout}).",
    BlackjackOutcome.PUSH: "It's a push. Refunded {payout}.",
    BlackjackOutcome.SURRENDER: "You surrendered. Refunded {payout}.",
    BlackjackOutcome.BUST: "Bust! You lost {bet}.",
    BlackjackOutcome.LOSE: "You lost {bet}.",
}


def blackjack_result_embed(resolution: BlackjackResolution) -> discord.Embed:
    lines = []
    if resolution.timed_out:
        lines.append("⏳ You took too long! Dealer automatically stands.")
    lines.append(f"**Dealer:** {format_cards(resolution.dealer)} (total: {resolution.dealer_total})")
    lines.append(f"**You:** {format_cards(resolution.player)} (total: {resolution.player_total})")
    lines.append("")
    lines.append(
        _RESULT_LINES[resolution.outcome].format(
            gain=resolution.net,
            payout=resolution.payout,
            bet=resolution.bet,
        )
    )
    won = resolution.payout > resolution.bet
    embed = discord.Embed(
        color=discord.Color.green() if won else discord.Color.red(),
        title="🃏 Blackjack",
        description="\n".join(lines),
    )
    embed.set_footer(text=f"Bet: {resolution.bet}")
    return embed


def roulette_strip(index: int, span: int = 7) -> str:
    half = span // 2
    parts = []
    for offset in range(-half, half + 1):
        number = ROULETTE_WHEEL[(index + offset) % len(ROULETTE_WHEEL)]
        label = f"{COLOR_EMOJI[roulette_color(number)]}{number:>2}"
        parts.append(f"[{label}]" if offset == 0 else f" {label} ")
    return " ".join(parts)


def roulette_frame_embed(index: int) -> discord.Embed:
    description = "\n".join(
        [
            "🎰 **ROULETTE** 🎰",
            "▼".center(40),
            roulette_strip(index),
            "🌟 Spinning the wheel… 🌟",
        ]
    )
    return discord.Embed(color=discord.Color.orange(), description=description)


def roulette_result_embed(result: RouletteResult) -> discord.Embed:
    headline = "💰 WINNER! 💰" if result.payout > 0 else "😤 Better luck next time"
    description = "\n".join(
        [
            "🎰 **ROULETTE** 🎰",
            f"🏆 Result: **{result.result}** {COLOR_EMOJI[result.color]}",
            headline,
            "",
            f"Bet: {result.bet} on {result.bet_type}"
            + (f" {result.number}" if result.bet_type == "number" else "")
            + f" • Payout: {result.payout} • Net: {signed(result.net)}",
        ]
    )
    embed = discord.Embed(
        color=discord.Color.green() if result.payout > 0 else discord.Color.red(),
        description=description,
    )
    embed.set_footer(text=f"Bet: {result.bet}")
    return embed


def slots_frame_embed(line: str, footer: str) -> discord.Embed:
    embed = discord.Embed(
        color=discord.Color.purple(),
        description=f"💎 **DIAMOND SLOT** 💎\n\n{line}",
    )
    embed.set_footer(text=footer)
    return embed


def slots_result_embed(result: SlotsResult) -> discord.Embed:
    headline = "💰 WINNER! 💰" if result.payout > 0 else "😤 Miss! Try again"
    description = "\n".join(
        [
            "💎 **DIAMOND SLOT** 💎",
            "",
            " ".join(result.reels),
            "",
            headline,
            f"Bet: {result.bet} • Payout: {result.payout} • Net: {signed(result.net)}",
        ]
    )
    embed = discord.Embed(
        color=discord.Color.green() if result.payout > 0 else discord.Color.red(),
        description=description,
    )
    embed.set_footer(text=f"Bet: {result.bet}")
    return embed
