from __future__ import annotations

STRINGS: dict[str, dict[str, str]] = {
    "welcome": {
        "en": "Hi {name}! Pick a drill below or type /drills any time.",
        "uk": "Привіт, {name}! Обери вправу нижче або напиши /drills будь-коли.",
    },
    "choose_lang": {"en": "Choose UI language:", "uk": "Оберіть мову інтерфейсу:"},
    "choose_drill": {"en": "Choose a drill:", "uk": "Обери вправу:"},
    "problem_header": {"en": "Problem {number} of {total}", "uk": "Завдання {number} з {total}"},
    "word_header": {"en": "Word {number} of {total}", "uk": "Слово {number} з {total}"},
    "type_answer": {"en": "Type your answer.", "uk": "Напиши відповідь."},
    "pick_option": {"en": "Tap an option or type its letter.", "uk": "Натисни варіант або напиши його літеру."},
    "retry_prompt": {
        "en": "I couldn't prepare the next problem.\n{error}",
        "uk": "Не вдалося підготувати наступне завдання.\n{error}",
    },
    "retry": {"en": "Try again", "uk": "Спробувати ще"},
    "play_again": {"en": "Play again", "uk": "Ще раз"},
    "other_drill": {"en": "Other drills", "uk": "Інші вправи"},
    "reveal": {"en": "Show answer", "uk": "Показати відповідь"},
    "hint": {"en": "Hint", "uk": "Підказка"},
    "completed": {
        "en": "Session complete! {correct} out of {total} correct.\nBonus: {bonus} golden coins.",
        "uk": "Сесію завершено! Правильно {correct} з {total}.\nБонус: {bonus} золотих монет.",
    },
    "coins_total": {"en": "You have {coins} golden coins.", "uk": "У тебе {coins} золотих монет."},
    "no_drill": {
        "en": "No drill is running. Type /drills to start one.",
        "uk": "Зараз немає вправи. Напиши /drills, щоб почати.",
    },
    "stopped": {"en": "Drill stopped.", "uk": "Вправу зупинено."},
    "need_words": {
        "en": "Your word list is empty. Add words with /addwords cat, dog, tree",
        "uk": "Список слів порожній. Додай слова: /addwords cat, dog, tree",
    },
    "words_list": {"en": "Your words ({count}):\n{words}", "uk": "Твої слова ({count}):\n{words}"},
    "words_added": {"en": "Added: {words}", "uk": "Додано: {words}"},
    "words_none_added": {"en": "Nothing new to add.", "uk": "Нових слів немає."},
    "words_cleared": {"en": "Word list cleared ({count}).", "uk": "Список слів очищено ({count})."},
    "need_more_words": {
        "en": "This drill needs at least {count} words in your list. Add more with /addwords",
        "uk": "Для цієї вправи потрібно щонайменше {count} слів у списку. Додай ще: /addwords",
    },
    "suggest_usage": {"en": "Usage: /suggest [word length 2-10]", "uk": "Використання: /suggest [довжина слова 2-10]"},
    "suggest_failed": {
        "en": "I couldn't think of new words right now. Try again later.",
        "uk": "Зараз не вдалося підібрати нові слова. Спробуй пізніше.",
    },
    "suggested": {"en": "Words to try: {words}", "uk": "Спробуй ці слова: {words}"},
    "add_suggested": {"en": "Add to my words", "uk": "Додати до моїх слів"},
    "suggestions_gone": {"en": "Those suggestions expired. Ask again with /suggest", "uk": "Ці пропозиції застаріли. Спробуй /suggest ще раз"},
    "voice_on": {"en": "Narration is on.", "uk": "Озвучення увімкнено."},
    "voice_off": {"en": "Narration is off.", "uk": "Озвучення вимкнено."},
    "voice_usage": {"en": "Usage: /voice on|off", "uk": "Використання: /voice on|off"},
    "level_set": {"en": "Difficulty: {level}.", "uk": "Складність: {level}."},
    "level_usage": {"en": "Usage: /level easy|medium|hard", "uk": "Використання: /level easy|medium|hard"},
    "bad_argument": {"en": "I didn't understand that: {error}", "uk": "Не зрозумів: {error}"},
}

def t(key: str, lang: str, **kwargs) -> str:
    text = STRINGS.get(key, {}).get(lang, STRINGS.get(key, {}).get("en", key))
    return text.format(**kwargs) if kwargs else text
