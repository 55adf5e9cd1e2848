import logging

from beanie import PydanticObjectId
from fastapi import HTTPException

from src.helpers.llm import LLMClient
from src.models.quiz import Quiz
from src.models.submission import Submission
from src.schemas.req.quiz import HintRequest

logger = logging.getLogger(__name__)

AI_GENERATED = "ai_generated"
FALLBACK = "fallback"

FALLBACK_HINTS = {
    "easy": "Think about the basic concepts in this field.",
    "medium": "Consider how the key ideas of this topic relate to each other.",
    "hard": "Break the question into parts and eliminate the answers you are sure are wrong.",
}
FALLBACK_EXPLANATION_CORRECT = "Well done! Your answer is correct."
FALLBACK_EXPLANATION_INCORRECT = "Review this topic and compare your answer with the correct one."
FALLBACK_SKIPPED = "You skipped this question. Consider attempting all questions even if unsure."
FALLBACK_ADVICE_PASSED = "Great work! Keep practicing to strengthen your knowledge of {category}."
FALLBACK_ADVICE_FAILED = "Review the fundamentals of {category} and try the quiz again."


class AIHintsService:
    """Подсказки и объяснения от LLM. Любая ошибка LLM заменяется заготовленным текстом."""

    def __init__(self):
        self.llm = LLMClient()

    async def _complete(self, prompt: str, system_prompt: str, fallback: str, max_tokens: int = 200):
        try:
            text = await self.llm.generate_response(prompt, system_prompt=system_prompt, max_tokens=max_tokens)
            return text, AI_GENERATED
        except Exception as e:
            logger.warning("AI generation failed, using fallback text: %s", e)
            return fallback, FALLBACK

    async def generate_hint(self, req: HintRequest):
        prompt = (
            f"Generate a moderate hint for this {req.difficulty} level {req.category} question:\n\n"
            f"Question: {req.question}\nCorrect Answer: {req.correct_answer}\n\n"
            "Provide a hint that helps the student think about the answer without giving it away."
        )
        hint, source = await self._complete(
            prompt,
            "You are an expert educational assistant. Provide hints that guide students "
            "toward the correct answer without giving it away directly.",
            FALLBACK_HINTS.get(req.difficulty, FALLBACK_HINTS["easy"]),
            max_tokens=150,
        )
        return {"hint": hint, "type": source}

    async def generate_explanation(self, question: str, correct_answer: str, user_answer: str, is_correct: bool):
        prompt = (
            f"Question: {question}\nCorrect answer: {correct_answer}\nStudent answer: {user_answer}\n\n"
            f"Explain briefly why the student's answer is {'correct' if is_correct else 'incorrect'}."
        )
        explanation, source = await self._complete(
            prompt,
            "You are an expert educator. Provide clear, educational explanations for why answers "
            "are correct or incorrect.",
            FALLBACK_EXPLANATION_CORRECT if is_correct else FALLBACK_EXPLANATION_INCORRECT,
            max_tokens=250,
        )
        return {"explanation": explanation, "type": source}

    async def generate_study_suggestions(self, category: str, difficulty: str, summary: str, passed: bool):
        prompt = (
            f"A student took a {difficulty} quiz on {category} and scored {summary}. "
            "Suggest what to study next in two or three sentences."
        )
        fallback = (FALLBACK_ADVICE_PASSED if passed else FALLBACK_ADVICE_FAILED).format(category=category)
        suggestions, source = await self._complete(
            prompt,
            "You are an expert educational tutor. Provide personalized study suggestions. "
            "Be encouraging and specific.",
            fallback,
        )
        return {"suggestions": suggestions, "type": source}

    async def generate_quiz_feedback(self, submission_id: PydanticObjectId, user_id: PydanticObjectId):
        """Развернутый разбор сабмишена: объяснения по ошибкам и общий совет"""
        submission = await Submission.get(submission_id)
        if not submission:
            raise HTTPException(status_code=404, detail="Submission not found")
        if submission.user_id != user_id:
            raise HTTPException(status_code=403, detail="Access denied")

        quiz = await Quiz.get(submission.quiz_id)
        if not quiz:
            raise HTTPException(status_code=404, detail="Quiz not found")
        question_map = {q.question_id: q for q in quiz.questions}

        question_feedback = []
        for index, answer in enumerate(submission.answers):
            question = question_map.get(answer.question_id)
            question_text = question.question if question else ""
            if answer.is_correct:
                question_feedback.append({
                    "question_index": index,
                    "question": question_text,
                    "status": "correct",
                    "feedback": FALLBACK_EXPLANATION_CORRECT,
                })
            elif not answer.user_answer:
                question_feedback.append({
                    "question_index": index,
                    "question": question_text,
                    "status": "skipped",
                    "feedback": FALLBACK_SKIPPED,
                })
            else:
                explanation = await self.generate_explanation(
                    question_text, answer.correct_answer, answer.user_answer, False
                )
                question_feedback.append({
                    "question_index": index,
                    "question": question_text,
                    "status": "incorrect",
                    "user_answer": answer.user_answer,
                    "correct_answer": answer.correct_answer,
                    "feedback": explanation["explanation"],
                })

        advice = await self.generate_study_suggestions(
            quiz.category,
            quiz.difficulty.value,
            f"{submission.correct_answers}/{len(submission.answers)}",
            submission.percentage >= 70,
        )

        return {
            "overall": {
                "correct_answers": submission.correct_answers,
                "incorrect_answers": submission.incorrect_answers,
                "skipped_answers": submission.skipped_answers,
                "total_questions": len(submission.answers),
                "percentage": submission.percentage,
            },
            "question_feedback": question_feedback,
            "general_advice": advice["suggestions"],
        }
