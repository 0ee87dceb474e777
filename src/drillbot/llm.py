from __future__ import annotations
from dataclasses import dataclass
import logging
from typing import Optional
from google import genai

logger = logging.getLogger(__name__)

_READING_LEVELS = {"easy": "beginner", "medium": "intermediate", "hard": "advanced"}

@dataclass
class LLMClient:
    api_key: str
    model: str = "gemini-2.5-flash"

    def _client(self):
        return genai.Client(api_key=self.api_key)

    def _generate(self, contents: str) -> str:
        client = self._client()
        resp = client.models.generate_content(model=self.model, contents=contents)
        return (resp.text or "").strip()

    def generate_definition_match(
        self,
        *,
        word: str,
        difficulty: str,
        word_list: list[str],
        extra_constraints: Optional[str] = None,
    ) -> str:
        level = _READING_LEVELS.get(difficulty, "beginner")
        logger.info(
            "llm_usage: generate_definition_match model=%s level=%s word_len=%s word_list=%s",
            self.model,
            level,
            len(word),
            len(word_list),
        )
        familiar = ", ".join(word_list) if word_list else "(none)"
        extra_block = f"\nExtra constraints: {extra_constraints}" if extra_constraints else ""
        contents = f"""You create word definition matching games for children learning vocabulary.
Reading level: {level}
Word to define: {word}
Other words the learner practices: {familiar}

Return ONLY valid JSON with this schema:
{{
  "word": "{word}",
  "correct_definition": "One clear, age-appropriate definition",
  "options": ["3 to 4 definitions including correct_definition, shuffled"],
  "hint": "Optional one-sentence clue about the word's category or usage"
}}
Constraints:
- Distractors must be plausible but clearly wrong for the word.
- options must contain correct_definition exactly once.
- Keep everything in English and suitable for children.
{extra_block}
"""
        return self._generate(contents)

    def generate_fill_blank(
        self,
        *,
        word: str,
        difficulty: str,
        word_list: list[str],
        extra_constraints: Optional[str] = None,
    ) -> str:
        level = _READING_LEVELS.get(difficulty, "beginner")
        logger.info(
            "llm_usage: generate_fill_blank model=%s level=%s word_len=%s word_list=%s",
            self.model,
            level,
            len(word),
            len(word_list),
        )
        familiar = ", ".join(word_list) if word_list else "(none)"
        extra_block = f"\nExtra constraints: {extra_constraints}" if extra_constraints else ""
        contents = f"""You create fill-in-the-blank sentences for children learning to read.
Reading level: {level}
Word to practice: {word}
Other words the learner practices (good distractors): {familiar}

Return ONLY valid JSON with this schema:
{{
  "sentence_with_blank": "A short sentence where the word is replaced by ____",
  "correct_word": "{word}",
  "options": ["3 to 4 words including correct_word"],
  "hint": "Optional one-sentence hint"
}}
Constraints:
- The blank is written as ____ and appears exactly once.
- Distractors must not fit the sentence.
{extra_block}
"""
        return self._generate(contents)

    def generate_word_problem(
        self,
        *,
        difficulty: str,
        operation: str,
        topic: str | None,
        learner_name: str | None,
        extra_constraints: Optional[str] = None,
    ) -> str:
        logger.info(
            "llm_usage: generate_word_problem model=%s difficulty=%s operation=%s topic=%s",
            self.model,
            difficulty,
            operation,
            bool(topic),
        )
        op_line = (
            "Choose any one of addition, subtraction, multiplication or division."
            if operation == "random"
            else f"Use {operation}."
        )
        topic_line = f"Theme: {topic}" if topic else "Theme: everyday life of a child"
        name_line = f"The learner's name is {learner_name}; you may use it in the story." if learner_name else ""
        extra_block = f"\nExtra constraints: {extra_constraints}" if extra_constraints else ""
        contents = f"""You write short math word problems for children.
Difficulty: {difficulty}
{op_line}
{topic_line}
{name_line}

Return ONLY valid JSON with this schema:
{{
  "problem_text": "The word problem (2-3 sentences)",
  "numerical_answer": 12,
  "explanation": "One sentence explaining how to solve it",
  "operation_used": "addition"
}}
Constraints:
- numerical_answer is a whole number.
- easy: numbers up to 20; medium: up to 100; hard: up to 1000.
{extra_block}
"""
        return self._generate(contents)

    def suggest_words(
        self,
        *,
        difficulty: str,
        word_length: int,
        mastered_words: list[str],
        extra_constraints: Optional[str] = None,
    ) -> str:
        level = _READING_LEVELS.get(difficulty, "beginner")
        logger.info(
            "llm_usage: suggest_words model=%s level=%s word_length=%s mastered=%s",
            self.model,
            level,
            word_length,
            len(mastered_words),
        )
        mastered_block = ""
        if mastered_words:
            lines = "\n".join(f"- {w}" for w in mastered_words)
            mastered_block = f"\nAlready mastered (suggest different words or related patterns):\n{lines}"
        extra_block = f"\nExtra constraints: {extra_constraints}" if extra_constraints else ""
        contents = f"""You suggest sight words for children learning to read.
Reading level: {level}
Word length: {word_length} letters
{mastered_block}

Return ONLY valid JSON with this schema:
{{
  "suggested_words": ["5 to 10 common sight words"]
}}
Constraints:
- Every word has exactly {word_length} letters and no spaces.
- Prefer frequent, useful words for this reading level.
{extra_block}
"""
        return self._generate(contents)
