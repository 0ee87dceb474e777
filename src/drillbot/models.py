from __future__ import annotations
import datetime as dt
from sqlalchemy import (
    String, Integer, DateTime, Boolean, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base

UTC = dt.timezone.utc
def utcnow() -> dt.datetime:
    return dt.datetime.now(tz=UTC)

class Learner(Base):
    __tablename__ = "learners"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)  # tg user id
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ui_lang: Mapped[str] = mapped_column(String(8), default="en")  # en/uk
    golden_coins: Mapped[int] = mapped_column(Integer, default=0)
    narration_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    difficulty: Mapped[str] = mapped_column(String(16), default="easy")  # easy|medium|hard
    created_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

class WordListEntry(Base):
    __tablename__ = "word_list_entries"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[int] = mapped_column(Integer, index=True)
    word: Mapped[str] = mapped_column(String(64))
    position: Mapped[int] = mapped_column(Integer, default=0)
    __table_args__ = (UniqueConstraint("learner_id", "word", name="uq_word_list_learner_word"),)

class MasteredWord(Base):
    __tablename__ = "mastered_words"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[int] = mapped_column(Integer, index=True)
    word: Mapped[str] = mapped_column(String(64))
    mastered_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (UniqueConstraint("learner_id", "word", name="uq_mastered_learner_word"),)

class SessionResult(Base):
    __tablename__ = "session_results"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    learner_id: Mapped[int] = mapped_column(Integer, index=True)
    exercise: Mapped[str] = mapped_column(String(32))  # arithmetic | spelling | definition-match | ...
    turns_correct: Mapped[int] = mapped_column(Integer)
    total_turns: Mapped[int] = mapped_column(Integer)
    bonus: Mapped[int] = mapped_column(Integer, default=0)
    completed_at: Mapped[dt.datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    __table_args__ = (Index("ix_session_results_learner_time", "learner_id", "completed_at"),)
