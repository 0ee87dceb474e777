from __future__ import annotations

import asyncio
import io
import logging
import re
from typing import Awaitable, Callable

import speech_recognition as sr
from gtts import gTTS
from pydub import AudioSegment

from .narration import Utterance

logger = logging.getLogger(__name__)

WORDS_PER_SECOND = 2.33
MIN_PLAYBACK_S = 1.0

VoiceSender = Callable[[bytes, str], Awaitable[None]]
AudioFetcher = Callable[[], Awaitable[bytes]]


def render_speech(text: str, lang: str = "en") -> bytes:
    """MP3 bytes for ``text``; blocking, run it off the loop."""
    tts = gTTS(text=text, lang=lang, slow=False)
    fp = io.BytesIO()
    tts.write_to_fp(fp)
    fp.seek(0)
    audio = fp.read()
    if not audio:
        raise RuntimeError(f"gTTS returned 0 bytes (lang: {lang})")
    return audio


def estimate_word_offsets(text: str) -> list[tuple[float, int, int]]:
    """(seconds, char_index, char_length) per word at a steady speaking rate."""
    offsets = []
    for n, match in enumerate(re.finditer(r"\S+", text or "")):
        offsets.append((n / WORDS_PER_SECOND, match.start(), match.end() - match.start()))
    return offsets


def estimate_duration(text: str) -> float:
    words = len((text or "").split())
    return max(MIN_PLAYBACK_S, words / WORDS_PER_SECOND)


class ChatVoiceSynthesizer:
    """Speaks by sending a voice message, then reports the end after the estimated playback time.

    A sent voice message cannot be recalled, so cancel only stops the rest of
    the utterance: no further boundaries and no end report.
    """

    def __init__(
        self,
        send_voice: VoiceSender,
        *,
        lang: str = "en",
        render: Callable[[str, str], bytes] = render_speech,
        playback: Callable[[str], float] = estimate_duration,
    ):
        self._send_voice = send_voice
        self.lang = lang
        self._render = render
        self._playback = playback
        self._task: asyncio.Task | None = None
        self._paused = asyncio.Event()
        self._paused.set()

    def speak(self, utterance: Utterance) -> None:
        self.cancel()
        self._paused.set()
        self._task = asyncio.get_running_loop().create_task(self._play(utterance))

    def pause(self) -> None:
        self._paused.clear()

    def resume(self) -> None:
        self._paused.set()

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _play(self, utterance: Utterance) -> None:
        try:
            audio = await asyncio.to_thread(self._render, utterance.text, self.lang)
            await self._send_voice(audio, utterance.text)
            logger.info("voice_sent: chars=%s bytes=%s", len(utterance.text), len(audio))
            elapsed = 0.0
            for at, idx, length in estimate_word_offsets(utterance.text):
                if at > elapsed:
                    await asyncio.sleep(at - elapsed)
                    elapsed = at
                await self._paused.wait()
                utterance.on_boundary(idx, length)
            remaining = self._playback(utterance.text) - elapsed
            if remaining > 0:
                await asyncio.sleep(remaining)
            await self._paused.wait()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("voice_failed: chars=%s", len(utterance.text))
            utterance.on_error(str(exc) or type(exc).__name__)
            return
        utterance.on_end()


def transcribe_speech(audio: bytes, language: str = "en-US") -> str:
    """Transcript of a recorded voice note (any format ffmpeg reads); blocking.

    Raises ``sr.UnknownValueError`` when nothing intelligible was said and
    ``sr.RequestError`` when the recognition service can't be reached.
    """
    sound = AudioSegment.from_file(io.BytesIO(audio))
    wav_io = io.BytesIO()
    sound.export(wav_io, format="wav")
    wav_io.seek(0)
    recognizer = sr.Recognizer()
    with sr.AudioFile(wav_io) as source:
        audio_data = recognizer.record(source)
    return recognizer.recognize_google(audio_data, language=language).strip()


class ChatSpeechRecognizer:
    """Single-shot recognizer over voice notes the learner sends to the chat.

    The handler queues a fetcher for the note before starting a capture;
    ``start`` downloads and transcribes it off the loop and reports one
    transcript or error, then the end.
    """

    def __init__(
        self,
        *,
        language: str = "en-US",
        transcribe: Callable[[bytes, str], str] = transcribe_speech,
    ):
        self.language = language
        self._transcribe = transcribe
        self._pending: AudioFetcher | None = None
        self._task: asyncio.Task | None = None

    def queue(self, fetch: AudioFetcher | None) -> None:
        self._pending = fetch

    def start(self, on_result, on_error, on_end) -> None:
        fetch, self._pending = self._pending, None
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._listen(fetch, on_result, on_error, on_end))

    def stop(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _listen(self, fetch: AudioFetcher | None, on_result, on_error, on_end) -> None:
        if fetch is None:
            on_error("no-speech")
            return
        try:
            audio = await fetch()
            if not audio:
                on_error("no-speech")
                return
            transcript = await asyncio.to_thread(self._transcribe, audio, self.language)
        except asyncio.CancelledError:
            raise
        except sr.UnknownValueError:
            logger.info("stt_no_match: lang=%s", self.language)
            on_error("no-match")
            return
        except sr.RequestError as exc:
            logger.warning("stt_request_failed: error=%s", exc)
            on_error("network")
            return
        except Exception as exc:
            logger.exception("stt_failed: lang=%s", self.language)
            on_error(str(exc) or type(exc).__name__)
            return
        logger.info("stt_result: chars=%s lang=%s", len(transcript), self.language)
        if transcript:
            on_result(transcript)
        on_end()
