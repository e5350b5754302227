import json
import logging
from typing import List

from openai import AuthenticationError, OpenAI, OpenAIError
from pydantic import ValidationError as PydanticValidationError

from grammar_quiz.config import settings
from grammar_quiz.errors import GenerationError
from grammar_quiz.schemas import QuestionPayload

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_COUNT = 5
MAX_QUESTION_COUNT = 10


class GrammarQuestionGenerator:
    def __init__(self, api_key: str | None = None, model: str | None = None):
        self.api_key = api_key or settings.openai_api_key
        self.model = model or settings.openai_model
        self.client = OpenAI(api_key=self.api_key) if self.api_key else None

    @staticmethod
    def build_prompt(grammar_type: str, difficulty_level: str, count: int) -> str:
        return (
            "You are a G-TELP grammar item writer. "
            f"Write {count} four-option multiple-choice English grammar questions "
            f"for grammar type '{grammar_type}' at {difficulty_level} difficulty.\n\n"
            "Each question is one English sentence with exactly one blank (_____), "
            "four answer options labelled A to D, a single correct letter, and a "
            "one-sentence explanation of why the answer is correct. "
            "Keep the items practical and accurate, in the style of the G-TELP exam.\n\n"
            "Respond with a JSON array only, shaped like this example:\n"
            "[\n"
            "  {\n"
            '    "question_text": "She _____ to school every day.",\n'
            '    "option_a": "go",\n'
            '    "option_b": "goes",\n'
            '    "option_c": "going",\n'
            '    "option_d": "gone",\n'
            '    "correct_answer": "B",\n'
            '    "explanation": "A third-person singular subject takes the -s form of a present-tense verb.",\n'
            f'    "grammar_type": "{grammar_type}",\n'
            f'    "difficulty_level": "{difficulty_level}"\n'
            "  }\n"
            "]"
        )

    def generate_questions(
        self,
        *,
        grammar_type: str,
        difficulty_level: str,
        count: int = DEFAULT_QUESTION_COUNT,
    ) -> List[QuestionPayload]:
        if not self.client:
            raise GenerationError("OPENAI_API_KEY is required to generate questions")
        if not 1 <= count <= MAX_QUESTION_COUNT:
            raise GenerationError(f"Question count must be between 1 and {MAX_QUESTION_COUNT}")

        prompt = self.build_prompt(grammar_type, difficulty_level, count)
        logger.info(
            "Generating questions via OpenAI (grammar_type=%r, difficulty_level=%s, count=%s, model=%s)",
            grammar_type,
            difficulty_level,
            count,
            self.model,
        )

        try:
            response = self.client.responses.create(
                model=self.model,
                input=prompt,
                temperature=settings.generation_temperature,
                max_output_tokens=settings.generation_max_output_tokens,
            )
        except AuthenticationError as exc:
            raise GenerationError("Invalid OpenAI API key") from exc
        except OpenAIError as exc:
            raise GenerationError(f"Generative-text API call failed: {exc}") from exc

        text = response.output_text or ""
        logger.info("OpenAI generation response length=%s", len(text))
        return self.parse_questions(text)

    @classmethod
    def parse_questions(cls, text: str) -> List[QuestionPayload]:
        payload = cls._extract_json_array(text)
        questions = []
        for idx, item in enumerate(payload):
            if not isinstance(item, dict):
                raise GenerationError(f"Invalid question format at index {idx}")
            try:
                questions.append(QuestionPayload(**item))
            except PydanticValidationError as exc:
                fields = ", ".join(sorted({str(err["loc"][0]) for err in exc.errors() if err.get("loc")}))
                raise GenerationError(f"Invalid question at index {idx}: {fields or 'format'}") from exc
        return questions

    @staticmethod
    def _extract_json_array(text: str) -> list:
        if not text or not text.strip():
            raise GenerationError("Model returned empty output while a JSON array was expected")

        # Greedy: from the first '[' to the last ']' so fences and prose around it are ignored
        start = text.find("[")
        end = text.rfind("]")
        if start == -1 or end == -1 or end < start:
            preview = text.strip()[:200].replace("\n", " ")
            raise GenerationError(f"Could not extract a JSON array from the model output. Preview: {preview!r}")

        candidate = text[start : end + 1]
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError as exc:
            preview = candidate[:220].replace("\n", " ")
            raise GenerationError(
                f"Model returned invalid JSON ({exc.msg} at line {exc.lineno}, col {exc.colno}). Preview: {preview!r}"
            ) from exc
        return payload
