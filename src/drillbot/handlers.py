from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass, field

from aiogram import Bot, Dispatcher, F
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandObject, CommandStart
from aiogram.types import BufferedInputFile, CallbackQuery, Message, User
from sqlalchemy.ext.asyncio import async_sessionmaker, AsyncSession

from .answer_input import AnswerInputController
from .choices import option_label
from .config import Settings
from .dictation import DictationChannel
from .engine import Drill
from .errors import ContentGenerationFailure
from .i18n import t
from .keyboards import kb_completed, kb_drills, kb_lang, kb_options, kb_retry, kb_reveal, kb_suggested
from .llm import LLMClient
from .narration import NarrationQueue
from .problems import DIFFICULTIES, Problem, ProblemParams
from .providers import Exercise, WordSuggester, build_exercises, parse_operation
from .rewards import (
    RewardLedger, add_words, clear_words, get_mastered_words, get_or_create_learner, get_word_list, split_words,
)
from .session import SessionReward, SessionTracker
from .voice import ChatSpeechRecognizer, ChatVoiceSynthesizer

logger = logging.getLogger(__name__)

_NOTICE_ICONS = {"info": "ℹ️", "success": "✅", "warning": "⚠️", "error": "❗"}

# ---------------- MarkdownV2 escape ----------------
def esc_md2(text: str) -> str:
    if text is None:
        return ""
    for ch in "\\" + r"_*[]()~`>#+-=|{}.!":
        text = text.replace(ch, "\\" + ch)
    return text

def _build_llm(settings: Settings) -> LLMClient | None:
    if not settings.gemini_api_key:
        return None
    return LLMClient(settings.gemini_api_key, model=settings.llm_model)

def _voice_fetcher(bot: Bot, voice):
    async def _fetch() -> bytes:
        buf = await bot.download(voice)
        return buf.read() if buf is not None else b""
    return _fetch


class ChatView:
    """Renders drill events into one chat; sends go out in the order they were issued."""

    def __init__(self, bot: Bot, chat_id: int, ui_lang: str):
        self._bot = bot
        self.chat_id = chat_id
        self.ui_lang = ui_lang
        self.exercise: str | None = None
        self.list_backed = False
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    def _post(self, text: str, **kwargs) -> None:
        task = asyncio.get_running_loop().create_task(self._send(text, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _send(self, text: str, **kwargs) -> None:
        async with self._send_lock:
            try:
                await self._bot.send_message(self.chat_id, text, parse_mode=ParseMode.MARKDOWN_V2, **kwargs)
            except Exception:
                logger.exception("chat_send_failed: chat_id=%s", self.chat_id)

    async def send_voice(self, audio: bytes, caption: str) -> None:
        async with self._send_lock:
            await self._bot.send_voice(
                self.chat_id,
                BufferedInputFile(audio, filename="narration.mp3"),
            )

    # --- DrillView -----------------------------------------------------

    def show_problem(self, problem: Problem, number: int, total: int) -> None:
        header_key = "word_header" if self.list_backed else "problem_header"
        header = t(header_key, self.ui_lang, number=number, total=total)
        lines = [f"*{esc_md2(header)}*", esc_md2(problem.prompt)]
        if problem.answer_kind == "choice":
            lines.extend(
                esc_md2(f"{option_label(i)}) {opt}") for i, opt in enumerate(problem.options)
            )
            lines.append(f"_{esc_md2(t('pick_option', self.ui_lang))}_")
            self._post("\n".join(lines), reply_markup=kb_options(problem.options))
            return
        lines.append(f"_{esc_md2(t('type_answer', self.ui_lang))}_")
        self._post("\n".join(lines))

    def feedback(self, message: str, correct: bool) -> None:
        icon = "✅" if correct else "❌"
        self._post(f"{icon} {esc_md2(message)}")

    def notice(self, text: str, level: str) -> None:
        icon = _NOTICE_ICONS.get(level, "ℹ️")
        self._post(f"{icon} {esc_md2(text)}")

    def hint(self, text: str) -> None:
        self._post(f"💡 {esc_md2(text)}")

    def reveal_available(self) -> None:
        self._post(
            esc_md2("Stuck? You can ask for a hint or see the answer."),
            reply_markup=kb_reveal(self.ui_lang),
        )

    def show_retry(self, message: str) -> None:
        self._post(
            esc_md2(t("retry_prompt", self.ui_lang, error=message)),
            reply_markup=kb_retry(self.ui_lang),
        )

    def show_completion(self, reward: SessionReward, coins: int | None) -> None:
        text = t(
            "completed",
            self.ui_lang,
            correct=reward.turns_correct,
            total=reward.total_turns,
            bonus=reward.bonus,
        )
        if coins is not None:
            text = f"{text}\n{t('coins_total', self.ui_lang, coins=coins)}"
        self._post(f"🏆 {esc_md2(text)}", reply_markup=kb_completed(self.exercise or "arithmetic", self.ui_lang))


@dataclass
class ChatDrills:
    """Per-chat engine state; one chat is one device with its own speech queues."""
    chat_id: int
    learner_id: int
    view: ChatView
    narration: NarrationQueue
    answers: AnswerInputController
    recognizer: ChatSpeechRecognizer
    drill: Drill | None = None
    suggested: list[str] = field(default_factory=list)


def register_handlers(dp: Dispatcher, *, settings: Settings, sessionmaker: async_sessionmaker[AsyncSession]):
    llm = _build_llm(settings)
    exercises = build_exercises(llm, hint_after=settings.hint_after)
    suggester = WordSuggester(llm)
    ledger = RewardLedger(sessionmaker)
    chats: dict[int, ChatDrills] = {}

    async def _learner(user: User):
        async with sessionmaker() as s:
            return await get_or_create_learner(
                s,
                user.id,
                first_name=user.first_name,
                ui_lang=settings.ui_default_lang,
                difficulty=settings.default_difficulty,
            )

    def _chat(bot: Bot, chat_id: int, learner) -> ChatDrills:
        chat = chats.get(chat_id)
        if chat is not None:
            chat.view.ui_lang = learner.ui_lang
            chat.narration.enabled = settings.narration_enabled and learner.narration_enabled
            return chat
        view = ChatView(bot, chat_id, learner.ui_lang)
        narration = NarrationQueue(
            ChatVoiceSynthesizer(view.send_voice, lang=settings.tts_lang),
            enabled=settings.narration_enabled and learner.narration_enabled,
            notice=view.notice,
        )
        recognizer = ChatSpeechRecognizer(language=settings.stt_lang)
        answers = AnswerInputController(
            DictationChannel(recognizer, enabled=settings.dictation_enabled, timeout_s=settings.dictation_timeout_s),
            notice=view.notice,
            audio_enabled=lambda: settings.dictation_enabled,
            listening_notice="Listening to your voice message...",
        )
        chat = ChatDrills(
            chat_id=chat_id,
            learner_id=learner.id,
            view=view,
            narration=narration,
            answers=answers,
            recognizer=recognizer,
        )
        chats[chat_id] = chat
        return chat

    async def _reply(bot: Bot, chat_id: int, text: str, **kwargs) -> None:
        await bot.send_message(chat_id, esc_md2(text), parse_mode=ParseMode.MARKDOWN_V2, **kwargs)

    async def _start_drill(
        bot: Bot,
        chat_id: int,
        user: User,
        name: str,
        *,
        category: str | None = None,
        topic: str | None = None,
    ) -> None:
        learner = await _learner(user)
        exercise: Exercise = exercises[name]
        chat = _chat(bot, chat_id, learner)
        if chat.drill is not None:
            chat.drill.leave()
            chat.drill = None

        words: list[str] = []
        if exercise.list_backed:
            async with sessionmaker() as s:
                words = await get_word_list(s, learner.id)
            if not words:
                await _reply(bot, chat_id, t("need_words", learner.ui_lang))
                return
            if len(words) < exercise.min_items:
                await _reply(bot, chat_id, t("need_more_words", learner.ui_lang, count=exercise.min_items))
                return
        params = ProblemParams(
            difficulty=learner.difficulty if learner.difficulty in DIFFICULTIES else settings.default_difficulty,
            topic=topic,
            category=category,
            learner_name=learner.first_name,
            word_list=tuple(words),
        )
        tracker = SessionTracker(
            target=settings.session_quota,
            items=words if exercise.list_backed else None,
            base_bonus=settings.base_bonus,
            penalty_per_wrong=settings.penalty_per_wrong,
        )
        chat.view.exercise = exercise.name
        chat.view.list_backed = exercise.list_backed
        chat.drill = Drill(
            exercise,
            params=params,
            tracker=tracker,
            narration=chat.narration,
            answers=chat.answers,
            view=chat.view,
            rewards=ledger,
            learner_id=learner.id,
            timing=settings.timing,
        )
        await chat.drill.start()

    async def _active_drill(m: Message) -> Drill | None:
        chat = chats.get(m.chat.id)
        if chat is None or chat.drill is None or chat.drill.completed:
            learner = await _learner(m.from_user)
            await m.answer(esc_md2(t("no_drill", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return None
        return chat.drill

    def _callback_drill(c: CallbackQuery) -> Drill | None:
        chat = chats.get(c.message.chat.id) if c.message else None
        return chat.drill if chat is not None else None

    @dp.message(CommandStart())
    async def on_start(m: Message):
        learner = await _learner(m.from_user)
        logger.info("learner_start: learner_id=%s lang=%s", learner.id, learner.ui_lang)
        await m.answer(
            esc_md2(t("welcome", learner.ui_lang, name=learner.first_name or "friend")),
            reply_markup=kb_drills(exercises),
            parse_mode=ParseMode.MARKDOWN_V2,
        )
        await m.answer(esc_md2(t("choose_lang", learner.ui_lang)), reply_markup=kb_lang(), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.message(Command("drills"))
    async def on_drills(m: Message):
        learner = await _learner(m.from_user)
        await m.answer(esc_md2(t("choose_drill", learner.ui_lang)), reply_markup=kb_drills(exercises), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.message(Command("math"))
    async def on_math(m: Message, command: CommandObject):
        arg = (command.args or "").strip() or None
        try:
            parse_operation(arg)
        except ValueError as exc:
            learner = await _learner(m.from_user)
            await m.answer(esc_md2(t("bad_argument", learner.ui_lang, error=str(exc))), parse_mode=ParseMode.MARKDOWN_V2)
            return
        await _start_drill(m.bot, m.chat.id, m.from_user, "arithmetic", category=arg)

    @dp.message(Command("times"))
    async def on_times(m: Message, command: CommandObject):
        await _start_drill(m.bot, m.chat.id, m.from_user, "times-table", category=(command.args or "").strip() or None)

    @dp.message(Command("compare"))
    async def on_compare(m: Message, command: CommandObject):
        await _start_drill(m.bot, m.chat.id, m.from_user, "comparison", category=(command.args or "").strip().lower() or None)

    @dp.message(Command("sequence"))
    async def on_sequence(m: Message):
        await _start_drill(m.bot, m.chat.id, m.from_user, "sequencing")

    @dp.message(Command("story"))
    async def on_story(m: Message, command: CommandObject):
        await _start_drill(m.bot, m.chat.id, m.from_user, "word-problem", topic=(command.args or "").strip() or None)

    @dp.message(Command("spell"))
    async def on_spell(m: Message):
        await _start_drill(m.bot, m.chat.id, m.from_user, "spelling")

    @dp.message(Command("define"))
    async def on_define(m: Message):
        await _start_drill(m.bot, m.chat.id, m.from_user, "definition-match")

    @dp.message(Command("fill"))
    async def on_fill(m: Message):
        await _start_drill(m.bot, m.chat.id, m.from_user, "fill-blank")

    @dp.message(Command("identify"))
    async def on_identify(m: Message):
        await _start_drill(m.bot, m.chat.id, m.from_user, "identify")

    @dp.message(Command("words"))
    async def on_words(m: Message, command: CommandObject):
        learner = await _learner(m.from_user)
        async with sessionmaker() as s:
            if (command.args or "").strip().lower() == "clear":
                removed = await clear_words(s, learner.id)
                await m.answer(esc_md2(t("words_cleared", learner.ui_lang, count=removed)), parse_mode=ParseMode.MARKDOWN_V2)
                return
            words = await get_word_list(s, learner.id)
        if not words:
            await m.answer(esc_md2(t("need_words", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        await m.answer(
            esc_md2(t("words_list", learner.ui_lang, count=len(words), words=", ".join(words))),
            parse_mode=ParseMode.MARKDOWN_V2,
        )

    @dp.message(Command("addwords"))
    async def on_addwords(m: Message, command: CommandObject):
        learner = await _learner(m.from_user)
        words = split_words(command.args or "")
        async with sessionmaker() as s:
            added = await add_words(s, learner.id, words)
        logger.info("words_added: learner_id=%s added=%s requested=%s", learner.id, len(added), len(words))
        if not added:
            await m.answer(esc_md2(t("words_none_added", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        await m.answer(esc_md2(t("words_added", learner.ui_lang, words=", ".join(added))), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.message(Command("suggest"))
    async def on_suggest(m: Message, command: CommandObject):
        learner = await _learner(m.from_user)
        arg = (command.args or "").strip()
        try:
            word_length = int(arg) if arg else 3
        except ValueError:
            word_length = 0
        async with sessionmaker() as s:
            mastered = await get_mastered_words(s, learner.id)
            known = await get_word_list(s, learner.id)
        try:
            words = await suggester.suggest(
                difficulty=learner.difficulty, word_length=word_length, mastered=mastered, known=known,
            )
        except ValueError:
            await m.answer(esc_md2(t("suggest_usage", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        except ContentGenerationFailure as exc:
            logger.warning("suggest_failed: learner_id=%s error=%s", learner.id, exc)
            await m.answer(esc_md2(t("suggest_failed", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        chat = _chat(m.bot, m.chat.id, learner)
        chat.suggested = words
        await m.answer(
            esc_md2(t("suggested", learner.ui_lang, words=", ".join(words))),
            reply_markup=kb_suggested(learner.ui_lang),
            parse_mode=ParseMode.MARKDOWN_V2,
        )

    @dp.message(Command("say"))
    async def on_say(m: Message):
        drill = await _active_drill(m)
        if drill is not None:
            drill.replay()

    @dp.message(Command("hint"))
    async def on_hint(m: Message):
        drill = await _active_drill(m)
        if drill is not None:
            drill.request_hint()

    @dp.message(Command("reveal"))
    async def on_reveal(m: Message):
        drill = await _active_drill(m)
        if drill is not None:
            drill.reveal()

    @dp.message(Command("restart"))
    async def on_restart(m: Message):
        chat = chats.get(m.chat.id)
        if chat is None or chat.drill is None:
            await _active_drill(m)
            return
        await chat.drill.restart()

    @dp.message(Command("stop"))
    async def on_stop(m: Message):
        chat = chats.get(m.chat.id)
        learner = await _learner(m.from_user)
        if chat is None or chat.drill is None:
            await m.answer(esc_md2(t("no_drill", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        chat.drill.leave()
        chat.drill = None
        await m.answer(esc_md2(t("stopped", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.message(Command("voice"))
    async def on_voice_toggle(m: Message, command: CommandObject):
        learner = await _learner(m.from_user)
        arg = (command.args or "").strip().lower()
        if arg not in ("on", "off"):
            await m.answer(esc_md2(t("voice_usage", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        async with sessionmaker() as s:
            learner = await get_or_create_learner(s, m.from_user.id)
            learner.narration_enabled = arg == "on"
            await s.commit()
        chat = _chat(m.bot, m.chat.id, learner)
        logger.info("narration_toggle: learner_id=%s enabled=%s", learner.id, chat.narration.enabled)
        await m.answer(esc_md2(t(f"voice_{arg}", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.message(Command("level"))
    async def on_level(m: Message, command: CommandObject):
        learner = await _learner(m.from_user)
        level = (command.args or "").strip().lower()
        if level not in DIFFICULTIES:
            await m.answer(esc_md2(t("level_usage", learner.ui_lang)), parse_mode=ParseMode.MARKDOWN_V2)
            return
        async with sessionmaker() as s:
            learner = await get_or_create_learner(s, m.from_user.id)
            learner.difficulty = level
            await s.commit()
        await m.answer(esc_md2(t("level_set", learner.ui_lang, level=level)), parse_mode=ParseMode.MARKDOWN_V2)

    @dp.message(Command("coins"))
    async def on_coins(m: Message):
        learner = await _learner(m.from_user)
        await m.answer(
            esc_md2(t("coins_total", learner.ui_lang, coins=learner.golden_coins or 0)),
            parse_mode=ParseMode.MARKDOWN_V2,
        )

    @dp.callback_query(F.data.startswith("lang:"))
    async def on_lang(c: CallbackQuery):
        lang = c.data.split(":", 1)[1]
        await c.answer()
        if lang not in ("en", "uk") or c.message is None:
            return
        async with sessionmaker() as s:
            learner = await get_or_create_learner(s, c.from_user.id, first_name=c.from_user.first_name)
            learner.ui_lang = lang
            await s.commit()
        chat = chats.get(c.message.chat.id)
        if chat is not None:
            chat.view.ui_lang = lang
        await _reply(c.bot, c.message.chat.id, t("choose_drill", lang), reply_markup=kb_drills(exercises))

    @dp.callback_query(F.data == "drills")
    async def on_drills_cb(c: CallbackQuery):
        await c.answer()
        if c.message is None:
            return
        learner = await _learner(c.from_user)
        await _reply(c.bot, c.message.chat.id, t("choose_drill", learner.ui_lang), reply_markup=kb_drills(exercises))

    @dp.callback_query(F.data.startswith("drill:"))
    async def on_drill_cb(c: CallbackQuery):
        name = c.data.split(":", 1)[1]
        await c.answer()
        if name not in exercises or c.message is None:
            return
        await _start_drill(c.bot, c.message.chat.id, c.from_user, name)

    @dp.callback_query(F.data == "suggest:add")
    async def on_add_suggested(c: CallbackQuery):
        await c.answer()
        if c.message is None:
            return
        learner = await _learner(c.from_user)
        chat = chats.get(c.message.chat.id)
        words = chat.suggested if chat is not None else []
        if not words:
            await _reply(c.bot, c.message.chat.id, t("suggestions_gone", learner.ui_lang))
            return
        chat.suggested = []
        async with sessionmaker() as s:
            added = await add_words(s, learner.id, words)
        logger.info("suggested_words_added: learner_id=%s added=%s offered=%s", learner.id, len(added), len(words))
        key = "words_added" if added else "words_none_added"
        await _reply(c.bot, c.message.chat.id, t(key, learner.ui_lang, words=", ".join(added)))

    @dp.callback_query(F.data.startswith("opt:"))
    async def on_option(c: CallbackQuery):
        await c.answer()
        drill = _callback_drill(c)
        if drill is None or drill.turn is None:
            return
        options = drill.turn.problem.options
        try:
            idx = int(c.data.split(":", 1)[1])
        except ValueError:
            return
        if 0 <= idx < len(options):
            drill.submit_text(options[idx])

    @dp.callback_query(F.data == "retry")
    async def on_retry(c: CallbackQuery):
        await c.answer()
        drill = _callback_drill(c)
        if drill is not None:
            await drill.retry()

    @dp.callback_query(F.data == "hint")
    async def on_hint_cb(c: CallbackQuery):
        await c.answer()
        drill = _callback_drill(c)
        if drill is not None:
            drill.request_hint()

    @dp.callback_query(F.data == "reveal")
    async def on_reveal_cb(c: CallbackQuery):
        await c.answer()
        drill = _callback_drill(c)
        if drill is not None:
            drill.reveal()

    @dp.message(F.voice)
    async def on_voice_answer(m: Message):
        drill = await _active_drill(m)
        if drill is None:
            return
        chat = chats[m.chat.id]
        chat.recognizer.queue(_voice_fetcher(m.bot, m.voice))
        if not drill.start_dictation():
            chat.recognizer.queue(None)
            logger.info("voice_answer_ignored: chat_id=%s listening=%s", m.chat.id, chat.answers.listening)

    @dp.message(F.text)
    async def on_answer(m: Message):
        drill = await _active_drill(m)
        if drill is None:
            return
        if drill.turn is None:
            logger.info("answer_without_turn: chat_id=%s retry=%s", m.chat.id, drill.awaiting_retry)
            return
        drill.submit_text(m.text or "")
