from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from .adapters.base import SelfIdentity
from .adapters.napcat import NapCatListener, NapCatPoster
from .commands import CommandRouter
from .common import truncate
from .config import Settings
from .memory.dozer import Dozer
from .memory.factory import build_memory_store
from .memory.scope import Scope
from .prompts.dialogue import build_system_prompt
from .services.embedding_client import EmbeddingClient
from .services.llm_client import ChatCompletionClient
from .thinking.aliases import AliasesMapping
from .thinking.engagement import build_score_table
from .thinking.loop import ToolLoop
from .thinking.thinker import Thinker
from .tools.alias_tool import AddAliasTool
from .tools.base import ToolRegistry
from .tools.memory_tools import SaveMemoryTool, SearchMemoryTool
from .tools.music_tool import NeteaseMusicTool

logger = logging.getLogger("rustaris_bot")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)


class Runtime:
    """Builds every collaborator once and runs the worker set until the stop event fires."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.stop = asyncio.Event()
        self.identity = SelfIdentity()

        self.listener = NapCatListener(
            settings.napcat_ws_url,
            settings.napcat_token,
            self.identity,
            admin_ids=settings.admin_user_ids,
        )
        self.poster = NapCatPoster(
            settings.napcat_http_url,
            settings.napcat_token,
            timeout_seconds=settings.napcat_request_timeout_seconds,
        )
        self.llm = ChatCompletionClient(
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout_seconds=settings.llm_timeout_seconds,
            temperature=settings.llm_temperature,
            max_output_tokens=settings.llm_max_output_tokens,
            base_url=settings.llm_base_url,
        )
        self.embedder = EmbeddingClient(
            base_url=settings.embedding_base_url,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            timeout_seconds=settings.embedding_timeout_seconds,
            api_key=settings.embedding_api_key,
        )
        self.memory = build_memory_store(settings, self.embedder)
        self.aliases = AliasesMapping.load(settings.aliases_path)
        self.dozer = Dozer(
            self.memory,
            self.llm,
            self.aliases,
            self.identity,
            threshold=settings.dozer_threshold,
        )
        registry = ToolRegistry(
            [
                SearchMemoryTool(self.memory),
                SaveMemoryTool(self.memory),
                AddAliasTool(self.aliases),
            ]
        )
        self.music: NeteaseMusicTool | None = None
        if settings.music_api_url:
            self.music = NeteaseMusicTool(
                self.poster,
                settings.music_api_url,
                timeout_seconds=settings.music_timeout_seconds,
            )
            registry.register(self.music)
        self.thinker = Thinker(
            loop=ToolLoop(
                self.llm,
                registry,
                max_rounds=settings.max_tool_rounds,
                fallback_reply=settings.fallback_reply,
            ),
            poster=self.poster,
            dozer=self.dozer,
            aliases=self.aliases,
            identity=self.identity,
            system_prompt=build_system_prompt(settings.bot_names, settings.preferred_response_language),
            score_table=build_score_table(settings.bot_names),
        )
        self.commands = CommandRouter(self.poster, settings.command_prefix)

    def request_stop(self) -> None:
        if not self.stop.is_set():
            logger.info("Exiting......")
            self.stop.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops; KeyboardInterrupt still ends main().
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.add_signal_handler(sig, self.request_stop)

    async def _ingest(self) -> None:
        poll = self.settings.heart_beat_seconds
        while not self.stop.is_set():
            try:
                message = await asyncio.wait_for(self.listener.events.get(), timeout=poll)
            except asyncio.TimeoutError:
                continue
            logger.info(
                "[msg.in] scope=%s user=%s text=%s",
                Scope.from_message(message),
                message.sender.user_id,
                truncate(message.raw, 200),
            )
            try:
                handled = await self.commands.dispatch(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Command dispatch failed for message id=%s", message.message_id)
                continue
            if not handled:
                self.thinker.submit(message)

    async def _doze_timer(self) -> None:
        interval = self.settings.dozer_interval_seconds
        while not self.stop.is_set():
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self.stop.wait(), timeout=interval)
            if self.stop.is_set():
                break
            try:
                await self.dozer.flush()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Dozer flush failed")

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)

    async def run(self) -> None:
        self._install_signal_handlers()
        await self.llm.start()
        await self.embedder.start()
        if self.music is not None:
            await self.music.start()
        await self.memory.init()
        if self.settings.dev_mode:
            logger.warning("Running in Dev mode (dozer threshold=%s)", self.settings.dozer_threshold)

        tasks = [
            asyncio.create_task(self.listener.run(self.stop), name="napcat-listener"),
            asyncio.create_task(self.poster.run(self.stop), name="napcat-poster"),
            asyncio.create_task(self._ingest(), name="ingest"),
            asyncio.create_task(
                self.thinker.run(self.stop, poll_interval=self.settings.heart_beat_seconds),
                name="thinker",
            ),
            asyncio.create_task(self._doze_timer(), name="dozer-timer"),
        ]
        try:
            await self.stop.wait()
        finally:
            self.stop.set()
            # Workers finish their current iteration; stragglers are cancelled.
            done, pending = await asyncio.wait(tasks, timeout=30.0)
            for task in pending:
                logger.warning("Worker did not stop in time: %s", task.get_name())
                task.cancel()
            for task in pending:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    logger.error("Worker %s crashed: %s", task.get_name(), task.exception())

            await self._run_shutdown_step("dozer.flush", self.dozer.flush(), timeout=60.0)
            self.aliases.save()
            await self._run_shutdown_step("memory.close", self.memory.close(), timeout=6.0)
            await self._run_shutdown_step("embedder.close", self.embedder.close(), timeout=6.0)
            await self._run_shutdown_step("llm.close", self.llm.close(), timeout=6.0)
            if self.music is not None:
                await self._run_shutdown_step("music.close", self.music.close(), timeout=6.0)


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    settings.validate()
    try:
        asyncio.run(Runtime(settings).run())
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
