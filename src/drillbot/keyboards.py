from __future__ import annotations
from aiogram.types import InlineKeyboardMarkup
from aiogram.utils.keyboard import InlineKeyboardBuilder
from .choices import option_label
from .i18n import t
from .providers import Exercise

def kb_drills(exercises: dict[str, Exercise]) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    for name, ex in exercises.items():
        b.button(text=ex.title, callback_data=f"drill:{name}")
    b.adjust(2)
    return b.as_markup()

def kb_options(options: tuple[str, ...]) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    for idx, opt in enumerate(options):
        # callback data carries the index; option text may exceed the 64 byte limit
        b.button(text=f"{option_label(idx)}) {opt}", callback_data=f"opt:{idx}")
    b.adjust(1)
    return b.as_markup()

def kb_retry(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="🔁 " + t("retry", ui_lang), callback_data="retry")
    b.adjust(1)
    return b.as_markup()

def kb_reveal(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="💡 " + t("hint", ui_lang), callback_data="hint")
    b.button(text="👀 " + t("reveal", ui_lang), callback_data="reveal")
    b.adjust(2)
    return b.as_markup()

def kb_completed(exercise: str, ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="▶️ " + t("play_again", ui_lang), callback_data=f"drill:{exercise}")
    b.button(text="📚 " + t("other_drill", ui_lang), callback_data="drills")
    b.adjust(2)
    return b.as_markup()

def kb_lang() -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="Українська", callback_data="lang:uk")
    b.button(text="English", callback_data="lang:en")
    b.adjust(2)
    return b.as_markup()

def kb_suggested(ui_lang: str) -> InlineKeyboardMarkup:
    b = InlineKeyboardBuilder()
    b.button(text="➕ " + t("add_suggested", ui_lang), callback_data="suggest:add")
    b.adjust(1)
    return b.as_markup()
