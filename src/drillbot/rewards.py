from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import Learner, MasteredWord, SessionResult, WordListEntry, utcnow
from .normalize import norm_cmp_text, norm_text
from .session import SessionReward

logger = logging.getLogger(__name__)

MAX_WORD_LEN = 64


def split_words(raw: str) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for part in (raw or "").replace(";", ",").replace("\n", ",").split(","):
        word = norm_text(part)[:MAX_WORD_LEN]
        key = norm_cmp_text(word)
        if key and key not in seen:
            seen.add(key)
            out.append(word)
    return out


async def get_or_create_learner(
    s: AsyncSession,
    learner_id: int,
    *,
    first_name: str | None = None,
    ui_lang: str = "en",
    difficulty: str = "easy",
) -> Learner:
    learner = await s.get(Learner, learner_id)
    if learner:
        if first_name and learner.first_name != first_name:
            learner.first_name = first_name
            await s.commit()
        return learner
    learner = Learner(id=learner_id, first_name=first_name, ui_lang=ui_lang, difficulty=difficulty)
    s.add(learner)
    await s.commit()
    return learner


async def get_word_list(s: AsyncSession, learner_id: int) -> list[str]:
    rows = (await s.execute(
        select(WordListEntry)
        .where(WordListEntry.learner_id == learner_id)
        .order_by(WordListEntry.position, WordListEntry.id)
    )).scalars().all()
    return [row.word for row in rows]


async def add_words(s: AsyncSession, learner_id: int, words: list[str]) -> list[str]:
    existing = {norm_cmp_text(w) for w in await get_word_list(s, learner_id)}
    max_pos = (await s.execute(
        select(func.max(WordListEntry.position)).where(WordListEntry.learner_id == learner_id)
    )).scalar_one_or_none() or 0
    added: list[str] = []
    for word in words:
        key = norm_cmp_text(word)
        if not key or key in existing:
            continue
        max_pos += 1
        s.add(WordListEntry(learner_id=learner_id, word=word, position=max_pos))
        existing.add(key)
        added.append(word)
    if added:
        await s.commit()
    return added


async def clear_words(s: AsyncSession, learner_id: int) -> int:
    rows = (await s.execute(
        select(WordListEntry).where(WordListEntry.learner_id == learner_id)
    )).scalars().all()
    for row in rows:
        await s.delete(row)
    if rows:
        await s.commit()
    return len(rows)


async def add_mastered_word(s: AsyncSession, learner_id: int, word: str) -> bool:
    key = norm_cmp_text(word)
    if not key:
        return False
    existing = (await s.execute(
        select(MasteredWord).where(MasteredWord.learner_id == learner_id, MasteredWord.word == key)
    )).scalar_one_or_none()
    if existing:
        return False
    s.add(MasteredWord(learner_id=learner_id, word=key, mastered_at=utcnow()))
    await s.commit()
    return True


async def get_mastered_words(s: AsyncSession, learner_id: int) -> list[str]:
    rows = (await s.execute(
        select(MasteredWord.word)
        .where(MasteredWord.learner_id == learner_id)
        .order_by(MasteredWord.mastered_at, MasteredWord.id)
    )).scalars().all()
    return list(rows)


async def record_session(
    s: AsyncSession,
    learner_id: int,
    *,
    exercise: str,
    reward: SessionReward,
) -> int:
    learner = await get_or_create_learner(s, learner_id)
    s.add(SessionResult(
        learner_id=learner_id,
        exercise=exercise,
        turns_correct=reward.turns_correct,
        total_turns=reward.total_turns,
        bonus=reward.bonus,
    ))
    learner.golden_coins = (learner.golden_coins or 0) + reward.bonus
    await s.commit()
    logger.info(
        "reward_recorded: learner_id=%s exercise=%s correct=%s total=%s bonus=%s coins=%s",
        learner_id,
        exercise,
        reward.turns_correct,
        reward.total_turns,
        reward.bonus,
        learner.golden_coins,
    )
    return learner.golden_coins


class RewardLedger:
    """Reward collaborator backed by the database; one instance per process."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def record_session(self, learner_id: int, exercise: str, reward: SessionReward) -> int:
        async with self._sessionmaker() as s:
            return await record_session(s, learner_id, exercise=exercise, reward=reward)

    async def add_mastered_word(self, learner_id: int, word: str) -> bool:
        async with self._sessionmaker() as s:
            return await add_mastered_word(s, learner_id, word)
