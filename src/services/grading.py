from typing import List, Sequence

from fastapi import HTTPException

from src.models.quiz import Question
from src.models.submission import AnswerRecord
from src.schemas.req.quiz import AnswerSubmission
from src.schemas.res.submission import QuestionResult, SubmissionResult

# (нижняя граница процента, оценка, уровень)
GRADE_TABLE = [
    (90, "A+", "Excellent"),
    (80, "A", "Very Good"),
    (70, "B", "Good"),
    (60, "C", "Average"),
    (50, "D", "Below Average"),
    (0, "F", "Poor"),
]


def round_half_up(numerator: int, denominator: int) -> int:
    """Целочисленное округление numerator/denominator, .5 всегда вверх"""
    return (2 * numerator + denominator) // (2 * denominator)


def percentage_of(score: int, total_marks: int) -> int:
    if total_marks <= 0:
        raise HTTPException(status_code=400, detail="Quiz total marks must be positive")
    return round_half_up(score * 100, total_marks)


def grade_for(percentage: int) -> str:
    return next(grade for floor, grade, _ in GRADE_TABLE if percentage >= floor)


def performance_for(percentage: int) -> str:
    return next(level for floor, _, level in GRADE_TABLE if percentage >= floor)


def time_efficiency(time_taken: float, time_limit: float) -> int:
    """Процент использованного времени"""
    return int(time_taken * 100 / time_limit + 0.5)


def grade_answers(questions: Sequence[Question], answers: Sequence[AnswerSubmission]) -> List[AnswerRecord]:
    """Проверяет ответы по ключу квиза. Список вопросов квиза главный:
    ответы на неизвестные вопросы игнорируются, неотвеченные вопросы получают пустой ответ."""
    if not questions:
        raise HTTPException(status_code=400, detail="Quiz has no questions")

    answers_map = {}
    for answer in answers:
        # первый ответ на вопрос побеждает
        answers_map.setdefault(answer.question_id, answer)

    graded = []
    for question in questions:
        submitted = answers_map.get(question.question_id)
        user_answer = submitted.answer if submitted else ""
        # точное сравнение строк, без trim и без учета регистра
        is_correct = user_answer == question.correct_answer
        graded.append(AnswerRecord(
            question_id=question.question_id,
            user_answer=user_answer,
            correct_answer=question.correct_answer,
            is_correct=is_correct,
            points=question.points,
            points_awarded=question.points if is_correct else 0,
            time_spent=submitted.time_spent if submitted else 0,
        ))
    return graded


def build_insights(percentage: int, correct: int, incorrect: int, skipped: int,
                   time_taken: float, time_limit: float) -> List[str]:
    insights = []

    if percentage >= 90:
        insights.append("Excellent performance! You've mastered this topic.")
    elif percentage >= 70:
        insights.append("Good job! You have a solid understanding of the material.")
    elif percentage >= 50:
        insights.append("You're on the right track. Review the topics you missed.")
    else:
        insights.append("Consider reviewing the material and retaking the quiz.")

    if time_limit > 0:
        efficiency = time_efficiency(time_taken, time_limit)
        if efficiency < 50:
            insights.append("You completed the quiz quickly. Great time management!")
        elif efficiency > 90:
            insights.append("You used most of the available time. Consider practicing to improve speed.")

    attempted = correct + incorrect
    if attempted and correct / attempted < 0.5 and skipped > incorrect:
        insights.append("You skipped many questions. Try to attempt all questions even if unsure.")

    return insights


def summarize_submission(graded: Sequence[AnswerRecord], total_marks: int,
                         time_taken: float, time_limit: float) -> SubmissionResult:
    if total_marks <= 0:
        raise HTTPException(status_code=400, detail="Quiz total marks must be positive")

    score = sum(record.points_awarded for record in graded)
    percentage = percentage_of(score, total_marks)

    correct = sum(1 for record in graded if record.is_correct)
    skipped = sum(1 for record in graded if not record.is_correct and record.user_answer == "")
    incorrect = len(graded) - correct - skipped

    return SubmissionResult(
        score=score,
        total_marks=total_marks,
        percentage=percentage,
        correct_answers=correct,
        incorrect_answers=incorrect,
        skipped_answers=skipped,
        grade=grade_for(percentage),
        performance=performance_for(percentage),
        insights=build_insights(percentage, correct, incorrect, skipped, time_taken, time_limit),
        per_question=[QuestionResult(**record.model_dump()) for record in graded],
    )
