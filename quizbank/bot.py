import asyncio
import logging
import os
from typing import Any, Callable, Optional, Set

import discord
from discord import app_commands
from discord.ext import commands

from . import embeds
from .config_manager import ConfigManager
from .data_manager import DataManager
from .history_store import HistoryStore
from .models import SessionSnapshot
from .quiz_controller import QuizController

logger = logging.getLogger(__name__)

FILTER_CHOICES = [
    app_commands.Choice(name=label, value=category.value)
    for category, label in embeds.CATEGORY_LABELS.items()
]


class QuizBot(commands.Bot):
    """Discord bot for running question bank quizzes"""

    def __init__(self, config=None):
        # Slash commands only need the guilds intent
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}

        self.data_manager: Optional[DataManager] = None
        self.config_manager: Optional[ConfigManager] = None
        self.history_store: Optional[HistoryStore] = None
        self.quiz_controller: Optional[QuizController] = None

        # Channels whose intent is being handled right now; their events are answered by the command itself
        self._command_channels: Set[int] = set()
        self._announce_tasks: Set[asyncio.Task] = set()

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")
            self.setup_components()
            await self.setup_commands()
            logger.info("Bot setup completed successfully")
        except Exception as e:
            logger.error(f"Error during bot setup: {e}")
            raise

    def setup_components(self) -> None:
        """Build the managers and the controller from the configuration."""
        self.config_manager = ConfigManager()
        if self.app_config:
            self.config_manager.apply_config(self.app_config)

        self.data_manager = DataManager(self.config_manager.get_quiz_directory())
        self.load_quiz_data()

        self.history_store = HistoryStore(self.config_manager.get_history_path())
        if self.history_store.load_errors:
            logger.warning(f"History loaded with {len(self.history_store.load_errors)} skipped lines")

        self.quiz_controller = QuizController(self.data_manager, self.config_manager, self.history_store)
        self.quiz_controller.set_event_listener(self.on_session_event)

    def load_quiz_data(self) -> None:
        """Load question banks from the quiz directory"""
        loaded_banks = self.data_manager.load_quiz_files()
        summary = self.data_manager.get_loading_summary()
        logger.info(
            f"Loaded {len(loaded_banks)} question banks ({summary['total_questions']} questions) "
            f"from {summary['quiz_directory']}"
        )
        for error in summary['errors']:
            logger.warning(f"Quiz loading error: {error}")

    async def setup_commands(self):
        """Register all slash commands"""
        # Dashboard commands
        @self.tree.command(name="help", description="Display available commands and their descriptions")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="dashboard", description="Show question categories, accuracy and banks")
        async def dashboard_command(interaction: discord.Interaction):
            await self.handle_dashboard(interaction)

        @self.tree.command(name="filter", description="Toggle a question category filter")
        @app_commands.describe(category="Category to include or exclude")
        @app_commands.choices(category=FILTER_CHOICES)
        async def filter_command(interaction: discord.Interaction, category: app_commands.Choice[str]):
            await self.handle_filter(interaction, category.value)

        @self.tree.command(name="clear_filters", description="Remove all category filters")
        async def clear_filters_command(interaction: discord.Interaction):
            await self.handle_clear_filters(interaction)

        @self.tree.command(name="history", description="Show the score history")
        async def history_command(interaction: discord.Interaction):
            await self.handle_history(interaction)

        # Quiz control commands
        @self.tree.command(name="start", description="Start a quiz with current settings")
        @app_commands.describe(bank="Question bank id", questions="Number of questions")
        async def start_command(
            interaction: discord.Interaction,
            bank: Optional[str] = None,
            questions: Optional[int] = None
        ):
            await self.handle_start(interaction, bank, questions)

        @self.tree.command(name="answer", description="Answer the current question")
        @app_commands.describe(option="Option number, starting at 1")
        async def answer_command(interaction: discord.Interaction, option: int):
            await self.handle_answer(interaction, option)

        @self.tree.command(name="continue", description="Continue after the explanation")
        async def continue_command(interaction: discord.Interaction):
            await self.handle_continue(interaction)

        @self.tree.command(name="next", description="Go to the next question")
        async def next_command(interaction: discord.Interaction):
            await self.handle_navigate(interaction, "next")

        @self.tree.command(name="previous", description="Go back to the previous question")
        async def previous_command(interaction: discord.Interaction):
            await self.handle_navigate(interaction, "previous")

        @self.tree.command(name="pause", description="Pause the current quiz session")
        async def pause_command(interaction: discord.Interaction):
            await self.handle_pause(interaction)

        @self.tree.command(name="resume", description="Resume the paused quiz session")
        async def resume_command(interaction: discord.Interaction):
            await self.handle_resume(interaction)

        @self.tree.command(name="mark", description="Mark or unmark a question for review")
        @app_commands.describe(question_id="Question id; defaults to the current question")
        async def mark_command(interaction: discord.Interaction, question_id: Optional[int] = None):
            await self.handle_mark(interaction, question_id)

        @self.tree.command(name="quit", description="End the current quiz early")
        async def quit_command(interaction: discord.Interaction):
            await self.handle_quit(interaction)

        @self.tree.command(name="restart", description="Return to the dashboard after a quiz")
        async def restart_command(interaction: discord.Interaction):
            await self.handle_restart(interaction)

        @self.tree.command(name="status", description="Show current quiz status and progress")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        # Configuration commands
        @self.tree.command(name="set_questions", description="Set the number of questions for the next quiz")
        async def set_questions_command(interaction: discord.Interaction, number: int):
            await self.handle_set_questions(interaction, number)

        @self.tree.command(name="set_timer", description="Set the time per question (10-300 seconds)")
        async def set_timer_command(interaction: discord.Interaction, seconds: int):
            await self.handle_set_timer(interaction, seconds)

        @self.tree.command(name="tutor_mode", description="Toggle tutor mode")
        async def tutor_mode_command(interaction: discord.Interaction):
            await self.handle_tutor_mode(interaction)

        @self.tree.command(name="timer", description="Toggle the question timer")
        async def timer_command(interaction: discord.Interaction):
            await self.handle_timer(interaction)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.quiz_controller is not None:
            self.quiz_controller.shutdown()
        await super().close()

    def _run_intent(self, channel_id: int, func: Callable[..., Any], *args) -> Any:
        """Call a controller intent; events it triggers are rendered by the command response."""
        self._command_channels.add(channel_id)
        try:
            return func(*args)
        finally:
            self._command_channels.discard(channel_id)

    def _bank_name(self, bank_id: Optional[str]) -> Optional[str]:
        if not bank_id:
            return None
        bank = self.data_manager.get_bank(bank_id)
        return bank.name if bank else bank_id

    def render_channel(self, channel_id: int) -> discord.Embed:
        """Embed for the channel's current screen: question, score card or dashboard."""
        snapshot = self.quiz_controller.get_snapshot(channel_id)
        return self.render_snapshot(channel_id, snapshot)

    def render_snapshot(self, channel_id: int, snapshot: SessionSnapshot) -> discord.Embed:
        if snapshot.view == "session":
            return embeds.question_embed(snapshot, self._bank_name(snapshot.bank_id))
        if snapshot.view == "final_score" and snapshot.last_record is not None:
            record = snapshot.last_record
            return embeds.score_embed(record, self._bank_name(record.bank_id))
        return embeds.dashboard_embed(self.quiz_controller.get_dashboard(channel_id))

    def on_session_event(self, channel_id: int, event: str, snapshot: SessionSnapshot) -> None:
        """Announce transitions that no command is waiting on, i.e. timer expiries."""
        if channel_id in self._command_channels:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"No running event loop to announce '{event}' in channel {channel_id}")
            return

        task = loop.create_task(self.announce_event(channel_id, event, snapshot))
        self._announce_tasks.add(task)
        task.add_done_callback(self._announce_tasks.discard)

    async def announce_event(self, channel_id: int, event: str, snapshot: SessionSnapshot) -> None:
        channel = self.get_channel(channel_id)
        if channel is None:
            logger.warning(f"Cannot announce '{event}': channel {channel_id} not found")
            return

        outgoing = []
        if event in ("timeout", "finished"):
            outgoing.append(embeds.timeout_embed())
        outgoing.append(self.render_snapshot(channel_id, snapshot))

        try:
            await channel.send(embeds=outgoing)
            logger.debug(f"Announced '{event}' in channel {channel_id}")
        except discord.HTTPException as e:
            logger.error(f"Failed to announce '{event}' in channel {channel_id}: {e}")

    async def _respond_with_result(
        self,
        interaction: discord.Interaction,
        result: dict,
        error_title: str
    ) -> None:
        """Reply with the channel's current screen, or an ephemeral error."""
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], error_title)
            return
        await interaction.response.send_message(
            content=result['user_message'],
            embed=self.render_channel(interaction.channel_id)
        )

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        try:
            bank_names = [bank.name for bank in self.data_manager.list_banks()]
            embed = embeds.help_embed(self.config_manager.get_settings_summary(), bank_names)
            await interaction.response.send_message(embed=embed)
        except Exception as e:
            logger.error(f"Error in help command: {e}")
            await self.send_error_response(interaction, "Failed to display help information", "❌ Help Error")

    async def handle_dashboard(self, interaction: discord.Interaction):
        """Handle /dashboard command"""
        try:
            dashboard = self.quiz_controller.get_dashboard(interaction.channel_id)
            embed = embeds.dashboard_embed(dashboard)

            summary = self.data_manager.get_loading_summary()
            if summary['fallback_active']:
                embed.add_field(
                    name="⚠️ Using Fallback Bank",
                    value="No question banks could be loaded; a built-in bank is active.",
                    inline=False
                )
            elif summary['has_errors']:
                embed.add_field(
                    name="⚠️ Loading Errors",
                    value=f"{summary['error_count']} problems reported while loading banks.",
                    inline=False
                )

            await interaction.response.send_message(embed=embed)
        except Exception as e:
            logger.error(f"Error in dashboard command: {e}")
            await self.send_error_response(interaction, "Failed to show the dashboard", "❌ Dashboard Error")

    async def handle_filter(self, interaction: discord.Interaction, category: str):
        """Handle /filter command"""
        try:
            channel_id = interaction.channel_id
            result = self.quiz_controller.toggle_filter(channel_id, category)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ Filter Error")
                return
            embed = embeds.dashboard_embed(self.quiz_controller.get_dashboard(channel_id))
            await interaction.response.send_message(content=result['user_message'], embed=embed)
        except Exception as e:
            logger.error(f"Error in filter command: {e}")
            await self.send_error_response(interaction, "Failed to update filters", "❌ Filter Error")

    async def handle_clear_filters(self, interaction: discord.Interaction):
        """Handle /clear_filters command"""
        try:
            channel_id = interaction.channel_id
            result = self.quiz_controller.clear_filters(channel_id)
            embed = embeds.dashboard_embed(self.quiz_controller.get_dashboard(channel_id))
            await interaction.response.send_message(content=result['user_message'], embed=embed)
        except Exception as e:
            logger.error(f"Error in clear_filters command: {e}")
            await self.send_error_response(interaction, "Failed to clear filters", "❌ Filter Error")

    async def handle_history(self, interaction: discord.Interaction):
        """Handle /history command"""
        try:
            dashboard = self.quiz_controller.get_dashboard(interaction.channel_id)
            await interaction.response.send_message(embed=embeds.history_embed(dashboard['series']))
        except Exception as e:
            logger.error(f"Error in history command: {e}")
            await self.send_error_response(interaction, "Failed to show the history", "❌ History Error")

    async def handle_start(
        self,
        interaction: discord.Interaction,
        bank: Optional[str] = None,
        questions: Optional[int] = None
    ):
        """Handle /start command"""
        try:
            channel_id = interaction.channel_id
            if not self.data_manager.get_available_banks():
                await self.send_error_response(
                    interaction,
                    "No question banks found. Add JSON files to the quizzes directory.",
                    "❌ No Question Banks"
                )
                return

            result = self._run_intent(
                channel_id, self.quiz_controller.start_quiz, channel_id, bank, questions
            )
            await self._respond_with_result(interaction, result, "❌ Quiz Start Failed")
        except Exception as e:
            logger.error(f"Error in start command: {e}", exc_info=True)
            await self.send_error_response(interaction, "Failed to start quiz", "❌ Quiz Start Error")

    async def handle_answer(self, interaction: discord.Interaction, option: int):
        """Handle /answer command; options are numbered from 1 for users"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.answer, channel_id, option - 1)
            await self._respond_with_result(interaction, result, "❌ Answer Not Accepted")
        except Exception as e:
            logger.error(f"Error in answer command: {e}", exc_info=True)
            await self.send_error_response(interaction, "Failed to submit answer", "❌ Quiz Control Error")

    async def handle_continue(self, interaction: discord.Interaction):
        """Handle /continue command"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.continue_quiz, channel_id)
            await self._respond_with_result(interaction, result, "❌ Cannot Continue")
        except Exception as e:
            logger.error(f"Error in continue command: {e}", exc_info=True)
            await self.send_error_response(interaction, "Failed to continue quiz", "❌ Quiz Control Error")

    async def handle_navigate(self, interaction: discord.Interaction, direction: str):
        """Handle /next and /previous commands"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.navigate, channel_id, direction)
            await self._respond_with_result(interaction, result, "❌ Cannot Move")
        except Exception as e:
            logger.error(f"Error in {direction} command: {e}", exc_info=True)
            await self.send_error_response(interaction, "Failed to change question", "❌ Quiz Control Error")

    async def handle_pause(self, interaction: discord.Interaction):
        """Handle /pause command"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.pause_quiz, channel_id)
            await self._respond_with_result(interaction, result, "❌ Cannot Pause")
        except Exception as e:
            logger.error(f"Error in pause command: {e}")
            await self.send_error_response(interaction, "Failed to pause quiz", "❌ Quiz Control Error")

    async def handle_resume(self, interaction: discord.Interaction):
        """Handle /resume command"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.resume_quiz, channel_id)
            await self._respond_with_result(interaction, result, "❌ Cannot Resume")
        except Exception as e:
            logger.error(f"Error in resume command: {e}")
            await self.send_error_response(interaction, "Failed to resume quiz", "❌ Quiz Control Error")

    async def handle_mark(self, interaction: discord.Interaction, question_id: Optional[int] = None):
        """Handle /mark command"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.toggle_mark, channel_id, question_id)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "❌ Mark Failed")
                return
            await interaction.response.send_message(result['user_message'], ephemeral=True)
        except Exception as e:
            logger.error(f"Error in mark command: {e}")
            await self.send_error_response(interaction, "Failed to mark question", "❌ Mark Error")

    async def handle_quit(self, interaction: discord.Interaction):
        """Handle /quit command"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.quit_quiz, channel_id)
            if not result['success']:
                await self.send_error_response(interaction, result['user_message'], "ℹ️ No Active Quiz")
                return

            record = result['record']
            embed = embeds.score_embed(record, self._bank_name(record.bank_id), title="🛑 Quiz Ended")
            await interaction.response.send_message(content=result['user_message'], embed=embed)
        except Exception as e:
            logger.error(f"Error in quit command: {e}")
            await self.send_error_response(interaction, "Failed to quit quiz", "❌ Quiz Control Error")

    async def handle_restart(self, interaction: discord.Interaction):
        """Handle /restart command"""
        try:
            channel_id = interaction.channel_id
            result = self._run_intent(channel_id, self.quiz_controller.restart, channel_id)
            await self._respond_with_result(interaction, result, "❌ Cannot Restart")
        except Exception as e:
            logger.error(f"Error in restart command: {e}")
            await self.send_error_response(interaction, "Failed to restart", "❌ Quiz Control Error")

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        try:
            channel_id = interaction.channel_id
            summary = self.quiz_controller.get_session_status_summary(channel_id)
            session_info = self.quiz_controller.get_session_progress(channel_id)
            embed = embeds.status_embed(summary, session_info)
            await interaction.response.send_message(embed=embed, ephemeral=session_info is None)
        except Exception as e:
            logger.error(f"Error in status command: {e}")
            await self.send_error_response(interaction, "Failed to get quiz status", "❌ Status Error")

    async def _handle_setting(self, interaction: discord.Interaction, result: dict, title: str) -> None:
        if not result['success']:
            await self.send_error_response(interaction, result['user_message'], "❌ Invalid Setting")
            return
        embed = embeds.message_embed(result['user_message'], title, embeds.COLOR_SUCCESS)
        embed.add_field(
            name="⚙️ Current Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        if self.quiz_controller.has_active_session(interaction.channel_id):
            embed.set_footer(text="Changes apply to the next quiz")
        await interaction.response.send_message(embed=embed)

    async def handle_set_questions(self, interaction: discord.Interaction, number: int):
        """Handle /set_questions command"""
        try:
            result = self.config_manager.set_question_count(number)
            await self._handle_setting(interaction, result, "✅ Question Count Updated")
        except Exception as e:
            logger.error(f"Error in set_questions command: {e}")
            await self.send_error_response(interaction, "Failed to set question count", "❌ Settings Error")

    async def handle_set_timer(self, interaction: discord.Interaction, seconds: int):
        """Handle /set_timer command"""
        try:
            result = self.config_manager.set_time_per_question(seconds)
            await self._handle_setting(interaction, result, "✅ Timer Updated")
        except Exception as e:
            logger.error(f"Error in set_timer command: {e}")
            await self.send_error_response(interaction, "Failed to set timer", "❌ Settings Error")

    async def handle_tutor_mode(self, interaction: discord.Interaction):
        """Handle /tutor_mode command"""
        try:
            result = self.config_manager.toggle_tutor_mode()
            await self._handle_setting(interaction, result, "✅ Tutor Mode Updated")
        except Exception as e:
            logger.error(f"Error in tutor_mode command: {e}")
            await self.send_error_response(interaction, "Failed to toggle tutor mode", "❌ Settings Error")

    async def handle_timer(self, interaction: discord.Interaction):
        """Handle /timer command"""
        try:
            result = self.config_manager.toggle_timer()
            await self._handle_setting(interaction, result, "✅ Timer Updated")
        except Exception as e:
            logger.error(f"Error in timer command: {e}")
            await self.send_error_response(interaction, "Failed to toggle the timer", "❌ Settings Error")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = embeds.error_embed(message, title)
            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = QuizBot(config)

    try:
        logger.info("Starting Discord quiz bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
