"""
Discord embed builders.

Pure functions from engine snapshots and controller dictionaries to
discord.Embed objects; nothing here reads or changes session state.
"""
from typing import Any, Dict, Iterable, List, Optional, Sequence

import discord

from .metrics import SeriesPoint
from .models import Category, HistoryRecord, MediaKind, SessionSnapshot

COLOR_SUCCESS = 0x00ff00
COLOR_ERROR = 0xff0000
COLOR_WARNING = 0xffaa00
COLOR_INFO = 0x6699ff

FIELD_LIMIT = 1024

CATEGORY_LABELS = {
    Category.UNUSED: "Unused",
    Category.USED: "Used",
    Category.CORRECT: "Correct",
    Category.INCORRECT: "Incorrect",
    Category.MARKED: "Marked",
    Category.OMITTED: "Omitted",
}

MEDIA_ICONS = {
    MediaKind.IMAGE: "🖼️",
    MediaKind.VIDEO: "🎬",
    MediaKind.AUDIO: "🔊",
}


def _truncate(text: str, limit: int = FIELD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[:limit - 3] + "..."


def message_embed(message: str, title: str, color: int = COLOR_INFO) -> discord.Embed:
    return discord.Embed(title=title, description=message, color=color)


def error_embed(message: str, title: str = "❌ Error") -> discord.Embed:
    embed = message_embed(message, title, COLOR_ERROR)
    embed.set_footer(text="If this error persists, try using /help for available commands")
    return embed


def _option_lines(snapshot: SessionSnapshot) -> str:
    question = snapshot.current_question
    lines = []
    for index, option in enumerate(question.options):
        marker = ""
        if snapshot.is_answered:
            if index == question.correct_answer_index:
                marker = " ✅"
            elif index == snapshot.selected_answer:
                marker = " ❌"
        lines.append(f"**{index + 1}.** {option}{marker}")
    return _truncate("\n".join(lines))


def question_embed(snapshot: SessionSnapshot, bank_name: Optional[str] = None) -> discord.Embed:
    """
    Render the current question of a session.

    Shows the options (with the verdict once answered), visible media, the
    countdown, the pause banner and, in tutor mode, the explanation.
    """
    question = snapshot.current_question
    if question is None:
        return error_embed("The current question is no longer available.", "❌ Question Missing")

    if snapshot.is_paused:
        color = COLOR_WARNING
    elif snapshot.is_answered:
        color = COLOR_INFO
    else:
        color = COLOR_SUCCESS

    embed = discord.Embed(
        title=f"🎯 Question {snapshot.current_index + 1}/{snapshot.total_questions}",
        description=_truncate(question.text, 4096),
        color=color
    )
    embed.add_field(name="Options", value=_option_lines(snapshot), inline=False)

    media = question.media
    if media is not None and question.media_visible(snapshot.is_answered):
        if media.kind == MediaKind.IMAGE:
            embed.set_image(url=media.url)
        embed.add_field(
            name=f"{MEDIA_ICONS.get(media.kind, '📎')} {media.kind.value.title()}",
            value=media.url,
            inline=False
        )

    if snapshot.is_paused:
        embed.add_field(name="⏸️ Paused", value="Use `/resume` to continue the quiz", inline=False)
    elif snapshot.timer_enabled and not snapshot.is_answered and snapshot.remaining_time is not None:
        embed.add_field(
            name="⏱️ Time Remaining",
            value=f"{int(round(snapshot.remaining_time))} seconds",
            inline=True
        )

    if snapshot.show_explanation:
        if snapshot.selected_answer is None:
            verdict = "⏰ Time's up!"
        elif snapshot.selected_answer == question.correct_answer_index:
            verdict = "✅ Correct!"
        else:
            verdict = "❌ Incorrect"
        explanation = question.explanation or f"The correct answer was: {question.correct_option}"
        embed.add_field(name=f"💡 {verdict}", value=_truncate(explanation), inline=False)

    embed.add_field(name="📊 Score", value=f"{snapshot.score}/{len(snapshot.attempts)}", inline=True)
    if bank_name:
        embed.add_field(name="📚 Bank", value=bank_name, inline=True)

    footer = []
    if snapshot.is_current_marked:
        footer.append("🔖 Marked")
    if snapshot.show_explanation:
        footer.append("Use /continue for the next question")
    elif not snapshot.is_answered:
        footer.append("Answer with /answer <number>")
    elif snapshot.can_go_next:
        footer.append("Use /next to move on")
    embed.set_footer(text=" | ".join(footer))
    return embed


def timeout_embed(question_text: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(
        title="⏰ Time's Up!",
        description="The question was recorded as omitted.",
        color=COLOR_ERROR
    )
    if question_text:
        embed.add_field(name="Question", value=_truncate(question_text), inline=False)
    return embed


def score_embed(
    record: HistoryRecord,
    bank_name: Optional[str] = None,
    title: str = "🎉 Quiz Complete!"
) -> discord.Embed:
    """Render the score card of a finished or quit session."""
    embed = discord.Embed(
        title=title,
        description=f"**{bank_name or record.bank_id}**",
        color=COLOR_SUCCESS if record.percentage >= 50 else COLOR_WARNING
    )
    embed.add_field(
        name="📊 Final Score",
        value=f"{record.score}/{record.total_questions} ({record.percentage:.0f}%)",
        inline=False
    )

    if record.attempts:
        lines = []
        for position, attempt in enumerate(record.attempts, start=1):
            if attempt.is_omitted:
                lines.append(f"{position}. ⏰ Question {attempt.question_id} (omitted)")
            elif attempt.is_correct:
                lines.append(f"{position}. ✅ Question {attempt.question_id}")
            else:
                lines.append(f"{position}. ❌ Question {attempt.question_id}")
        embed.add_field(name="📝 Attempts", value=_truncate("\n".join(lines)), inline=False)

    embed.set_footer(text="Use /restart to return to the dashboard")
    return embed


def dashboard_embed(dashboard: Dict[str, Any]) -> discord.Embed:
    """Render category counts, filters, accuracy and the banks available under the filters."""
    counts = dashboard['counts'].as_dict()
    active = dashboard['active_filters']

    embed = discord.Embed(
        title="📊 Quiz Dashboard",
        description=f"{dashboard['total_questions']} questions, {dashboard['history_count']} quizzes taken",
        color=COLOR_INFO
    )

    category_lines = [
        f"{'☑️' if category in active else '⬜'} {CATEGORY_LABELS[category]}: {counts[category]}"
        for category in Category
    ]
    embed.add_field(name="🗂️ Categories", value="\n".join(category_lines), inline=True)
    embed.add_field(name="🎯 Overall Accuracy", value=f"{dashboard['accuracy']:.1f}%", inline=True)

    if dashboard['banks']:
        bank_lines = [
            f"**{bank['name']}** (`{bank['id']}`): {bank['available']}/{bank['total']} questions"
            for bank in dashboard['banks']
        ]
        banks_value = _truncate("\n".join(bank_lines))
    else:
        banks_value = "No questions match the active filters."
    embed.add_field(name="📚 Question Banks", value=banks_value, inline=False)

    embed.set_footer(text="Toggle filters with /filter, start with /start")
    return embed


def _bar(percentage: float, width: int = 10) -> str:
    filled = int(round(percentage / 100 * width))
    return "█" * filled + "░" * (width - filled)


def history_chart(series: Sequence[SeriesPoint], limit: int = 15) -> str:
    """Text rendering of the score series, most recent ``limit`` points."""
    lines = [
        f"#{point.index:<3} {point.date:%Y-%m-%d %H:%M} {_bar(point.percentage_score)} {point.percentage_score:5.1f}%"
        for point in list(series)[-limit:]
    ]
    return "\n".join(lines)


def history_embed(series: Sequence[SeriesPoint]) -> discord.Embed:
    embed = discord.Embed(title="📈 Score History", color=COLOR_INFO)
    if not series:
        embed.description = "No quizzes taken yet. Use `/start` to begin."
        return embed

    embed.description = f"```\n{_truncate(history_chart(series), 4000)}\n```"
    average = sum(point.percentage_score for point in series) / len(series)
    embed.add_field(name="Quizzes", value=str(len(series)), inline=True)
    embed.add_field(name="Average", value=f"{average:.1f}%", inline=True)
    return embed


def help_embed(settings_summary: str, bank_names: Iterable[str]) -> discord.Embed:
    embed = discord.Embed(
        title="🎯 Quiz Bot Commands",
        description="Available commands for running quizzes",
        color=COLOR_SUCCESS
    )
    embed.add_field(
        name="📊 Dashboard",
        value=(
            "`/dashboard` - Show question categories, accuracy and banks\n"
            "`/filter <category>` - Toggle a category filter\n"
            "`/clear_filters` - Remove all filters\n"
            "`/history` - Show the score history"
        ),
        inline=False
    )
    embed.add_field(
        name="🎮 Quiz Control",
        value=(
            "`/start [bank] [questions]` - Start a quiz\n"
            "`/answer <number>` - Answer the current question\n"
            "`/continue` - Continue after the explanation (tutor mode)\n"
            "`/next`, `/previous` - Move between questions\n"
            "`/pause`, `/resume` - Pause or resume the quiz\n"
            "`/mark [question_id]` - Mark a question for review\n"
            "`/quit` - End the quiz early\n"
            "`/restart` - Return to the dashboard\n"
            "`/status` - Show quiz progress"
        ),
        inline=False
    )
    embed.add_field(
        name="📋 Settings",
        value=(
            "`/set_questions <number>` - Questions per quiz (1-20)\n"
            "`/set_timer <seconds>` - Time per question (10-300 seconds)\n"
            "`/timer` - Toggle the question timer\n"
            "`/tutor_mode` - Toggle tutor mode"
        ),
        inline=False
    )
    embed.add_field(name="⚙️ Current Settings", value=f"```\n{settings_summary}\n```", inline=False)

    names: List[str] = list(bank_names)
    if names:
        bank_list = ", ".join(names[:10])
        if len(names) > 10:
            bank_list += f" ... and {len(names) - 10} more"
    else:
        bank_list = "No question banks found. Add JSON files to the quizzes folder."
    embed.add_field(name="📚 Question Banks", value=f"```\n{bank_list}\n```", inline=False)

    embed.set_footer(text="Use slash commands to interact with the bot")
    return embed


def status_embed(summary: str, session_info: Optional[Dict[str, Any]]) -> discord.Embed:
    if session_info is None:
        embed = message_embed(summary, "ℹ️ No Active Quiz", COLOR_INFO)
        embed.add_field(name="🎯 Start a Quiz", value="Use `/start` to begin a new quiz session", inline=False)
        return embed

    if session_info['is_finished']:
        title, color = "✅ Quiz Status - Finished", COLOR_INFO
    elif session_info['is_paused']:
        title, color = "⏸️ Quiz Status - Paused", COLOR_WARNING
    else:
        title, color = "▶️ Quiz Status - Active", COLOR_SUCCESS

    embed = discord.Embed(title=title, description=f"**{session_info['bank_name']}**", color=color)
    embed.add_field(name="📊 Progress", value=summary.replace(" | ", "\n"), inline=False)
    if session_info['remaining_time'] is not None and not session_info['is_finished']:
        embed.add_field(
            name="⏰ Current Timer",
            value=f"{int(round(session_info['remaining_time']))} seconds remaining",
            inline=False
        )
    embed.set_footer(text="Use /help to see all available commands")
    return embed
