import html
import logging
import random
import re
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from beanie import PydanticObjectId
from fastapi import HTTPException

from src.helpers.trivia import TriviaAPIError, TriviaClient
from src.models.enums import Difficulty, QuestionType, SubmissionStatus
from src.models.leaderboard import Achievement
from src.models.quiz import Question, Quiz, QuizOptions
from src.models.submission import Submission, SubmissionFeedback
from src.models.user import User
from src.schemas.req.quiz import FeedbackDTO, QuizGenerateDTO, QuizSettingsDTO, QuizSubmitDTO
from src.schemas.res.submission import AchievementOut, QuestionResult, SubmissionResult, SubmitResponse
from src.services.achievements import award_achievements
from src.services.grading import build_insights, grade_answers, summarize_submission
from src.services.leaderboard import LeaderboardService
from src.services.stats import apply_submission_stats, pending_submissions

logger = logging.getLogger(__name__)


def build_questions(results: List[dict], shuffle=random.shuffle) -> List[Question]:
    """Превращает ответ trivia API во встроенные вопросы квиза"""
    questions = []
    for raw in results:
        correct = html.unescape(raw["correct_answer"])
        incorrect = [html.unescape(answer) for answer in raw.get("incorrect_answers", [])]
        all_answers = [correct, *incorrect]
        shuffle(all_answers)
        questions.append(Question(
            question_id=f"q_{uuid.uuid4().hex[:12]}",
            question=html.unescape(raw["question"]),
            type=QuestionType(raw["type"]),
            difficulty=Difficulty(raw["difficulty"]),
            category=html.unescape(raw["category"]),
            correct_answer=correct,
            incorrect_answers=incorrect,
            all_answers=all_answers,
        ))
    return questions


def submission_result(submission: Submission) -> SubmissionResult:
    """Результат из сохраненного сабмишена, без пересчета оценки"""
    return SubmissionResult(
        score=submission.score,
        total_marks=submission.total_marks,
        percentage=submission.percentage,
        correct_answers=submission.correct_answers,
        incorrect_answers=submission.incorrect_answers,
        skipped_answers=submission.skipped_answers,
        grade=submission.grade,
        performance=submission.performance,
        insights=build_insights(
            submission.percentage,
            submission.correct_answers,
            submission.incorrect_answers,
            submission.skipped_answers,
            submission.time_taken,
            submission.time_limit,
        ),
        per_question=[QuestionResult(**answer.model_dump()) for answer in submission.answers],
    )


def paginate(page: int, limit: int, total: int) -> dict:
    total_pages = -(-total // limit)
    return {
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_next_page": page < total_pages,
        "has_prev_page": page > 1,
    }


def hide_correct_answers(result: SubmissionResult) -> SubmissionResult:
    return result.model_copy(update={
        "per_question": [q.model_copy(update={"correct_answer": ""}) for q in result.per_question],
    })


def settings_update(settings: QuizSettingsDTO) -> dict:
    """Поля DTO -> $set квиза; флаги прохождения лежат в options"""
    return {
        f"options.{key}" if key in QuizOptions.model_fields else key: value
        for key, value in settings.model_dump(exclude_none=True).items()
    }


def quiz_summary(quiz: Quiz) -> dict:
    return {
        "id": str(quiz.id),
        "title": quiz.title,
        "description": quiz.description,
        "category": quiz.category,
        "difficulty": quiz.difficulty,
        "total_questions": quiz.total_questions,
        "total_marks": quiz.total_marks,
        "time_limit": quiz.time_limit,
        "stats": quiz.stats,
        "tags": quiz.tags,
        "is_active": quiz.is_active,
        "created_at": quiz.created_at,
    }


ANALYTICS_TIMEFRAMES = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
}


class QuizService:

    def __init__(self):
        self.trivia = TriviaClient()
        self.leaderboard_service = LeaderboardService()

    async def get_categories(self):
        try:
            return await self.trivia.get_categories()
        except TriviaAPIError as e:
            logger.error("Category fetch failed: %s", e)
            raise HTTPException(status_code=502, detail="Error fetching categories")

    async def generate_quiz(self, quiz_data: QuizGenerateDTO, user_id: PydanticObjectId) -> Quiz:
        """Создание квиза из вопросов trivia API"""
        try:
            results = await self.trivia.fetch_questions(
                quiz_data.amount, quiz_data.category, quiz_data.difficulty.value, quiz_data.type.value,
            )
        except TriviaAPIError as e:
            logger.error("Quiz generation failed: %s", e)
            raise HTTPException(status_code=502, detail=str(e))

        questions = build_questions(results)
        if not questions:
            raise HTTPException(status_code=400, detail="Trivia source returned no questions")

        quiz = Quiz(
            title=quiz_data.title,
            description=quiz_data.description,
            category=questions[0].category,
            difficulty=quiz_data.difficulty,
            type=quiz_data.type,
            time_limit=quiz_data.time_limit,
            questions=questions,
            created_by=user_id,
            tags=quiz_data.tags,
        )
        await quiz.insert()
        return quiz

    async def get_quiz(self, quiz_id: PydanticObjectId):
        """Квиз для прохождения, без правильных ответов"""
        quiz = await Quiz.get(quiz_id)
        if not quiz or not quiz.is_active:
            raise HTTPException(status_code=404, detail="Quiz not found")

        questions = quiz.questions
        if quiz.options.randomize_questions:
            questions = random.sample(questions, len(questions))

        return {
            "id": str(quiz.id),
            "title": quiz.title,
            "description": quiz.description,
            "category": quiz.category,
            "difficulty": quiz.difficulty,
            "time_limit": quiz.time_limit,
            "total_questions": quiz.total_questions,
            "total_marks": quiz.total_marks,
            "questions": [
                {
                    "question_id": q.question_id,
                    "question": q.question,
                    "type": q.type,
                    "difficulty": q.difficulty,
                    "answers": random.sample(q.all_answers, len(q.all_answers))
                    if quiz.options.randomize_answers else q.all_answers,
                    "points": q.points,
                }
                for q in questions
            ],
        }

    async def get_public_quizzes(self, page: int = 1, limit: int = 12, category: Optional[str] = None,
                                 difficulty: Optional[str] = None, search: Optional[str] = None):
        query = {"is_active": True}
        if category:
            query["category"] = {"$regex": re.escape(category), "$options": "i"}
        if difficulty and difficulty != "all":
            query["difficulty"] = difficulty
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"title": pattern}, {"description": pattern}, {"category": pattern}, {"tags": pattern}]

        quizzes = await Quiz.find(query).sort("-created_at").skip((page - 1) * limit).limit(limit).to_list()
        total = await Quiz.find(query).count()
        return {
            "quizzes": [quiz_summary(quiz) for quiz in quizzes],
            "total": total,
            "pagination": paginate(page, limit, total),
        }

    async def get_user_created_quizzes(self, user_id: PydanticObjectId, page: int = 1, limit: int = 10,
                                       is_active: bool = True):
        query = {"created_by": user_id, "is_active": is_active}
        quizzes = await Quiz.find(query).sort("-created_at").skip((page - 1) * limit).limit(limit).to_list()
        total = await Quiz.find(query).count()
        return {
            "quizzes": [quiz_summary(quiz) for quiz in quizzes],
            "total": total,
            "pagination": paginate(page, limit, total),
        }

    async def _get_managed_quiz(self, quiz_id: PydanticObjectId, user_id: PydanticObjectId, is_admin: bool) -> Quiz:
        quiz = await Quiz.get(quiz_id)
        if not quiz:
            raise HTTPException(status_code=404, detail="Quiz not found")
        if quiz.created_by != user_id and not is_admin:
            raise HTTPException(status_code=403, detail="Access denied")
        return quiz

    async def update_quiz_settings(self, quiz_id: PydanticObjectId, user_id: PydanticObjectId, is_admin: bool,
                                   settings: QuizSettingsDTO):
        """Настройки прохождения, лимит времени и активность. Вопросы и статистика не меняются."""
        quiz = await self._get_managed_quiz(quiz_id, user_id, is_admin)
        update = settings_update(settings)
        if not update:
            raise HTTPException(status_code=400, detail="No settings to update")

        await Quiz.get_motor_collection().update_one({"_id": quiz.id}, {"$set": update})
        logger.info("Quiz %s settings updated: %s", quiz_id, sorted(update))
        return {"message": "Quiz settings updated successfully", "quiz": quiz_summary(await Quiz.get(quiz_id))}

    async def delete_quiz(self, quiz_id: PydanticObjectId, user_id: PydanticObjectId, is_admin: bool):
        """Мягкое удаление: квиз деактивируется, сабмишены и статистика остаются"""
        quiz = await self._get_managed_quiz(quiz_id, user_id, is_admin)
        await Quiz.get_motor_collection().update_one({"_id": quiz.id}, {"$set": {"is_active": False}})
        return {"message": "Quiz deleted successfully"}

    async def get_quiz_analytics(self, timeframe: str = "30d"):
        since = datetime.utcnow() - ANALYTICS_TIMEFRAMES.get(timeframe, ANALYTICS_TIMEFRAMES["30d"])

        quiz_rows = await Quiz.get_motor_collection().aggregate([
            {"$match": {"created_at": {"$gte": since}}},
            {"$facet": {
                "total_quizzes": [{"$count": "count"}],
                "category_stats": [{"$group": {"_id": "$category", "count": {"$sum": 1}}}, {"$sort": {"count": -1}}],
                "difficulty_stats": [{"$group": {"_id": "$difficulty", "count": {"$sum": 1}}}],
                "popular_quizzes": [
                    {"$sort": {"stats.total_attempts": -1}},
                    {"$limit": 5},
                    {"$project": {"_id": 0, "title": 1, "category": 1, "total_attempts": "$stats.total_attempts"}},
                ],
            }},
        ]).to_list(length=1)

        submission_rows = await Submission.get_motor_collection().aggregate([
            {"$match": {"created_at": {"$gte": since}}},
            {"$facet": {
                "total_submissions": [{"$count": "count"}],
                "average_score": [{"$group": {"_id": None, "value": {"$avg": "$percentage"}}}],
                "daily_submissions": [
                    {"$group": {
                        "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
                        "count": {"$sum": 1},
                        "average_score": {"$avg": "$percentage"},
                    }},
                    {"$sort": {"_id": 1}},
                ],
            }},
        ]).to_list(length=1)

        quiz_facets = quiz_rows[0] if quiz_rows else {}
        submission_facets = submission_rows[0] if submission_rows else {}
        average = submission_facets.get("average_score") or [{}]
        return {
            "timeframe": timeframe if timeframe in ANALYTICS_TIMEFRAMES else "30d",
            "quizzes": {
                "total": (quiz_facets.get("total_quizzes") or [{}])[0].get("count", 0),
                "by_category": quiz_facets.get("category_stats", []),
                "by_difficulty": quiz_facets.get("difficulty_stats", []),
                "popular": quiz_facets.get("popular_quizzes", []),
            },
            "submissions": {
                "total": (submission_facets.get("total_submissions") or [{}])[0].get("count", 0),
                "average_score": round(average[0].get("value") or 0),
                "daily": submission_facets.get("daily_submissions", []),
            },
        }

    async def submit_quiz(self, quiz_id: PydanticObjectId, user_id: PydanticObjectId,
                          submit_data: QuizSubmitDTO) -> SubmitResponse:
        """Проверка, сохранение, агрегаты, лидерборд и ачивки - строго в этом порядке"""
        quiz = await Quiz.get(quiz_id)
        if not quiz:
            raise HTTPException(status_code=404, detail="Quiz not found")
        if not quiz.is_active:
            raise HTTPException(status_code=400, detail="Quiz is not active")

        user = await User.get(user_id)
        if not user:
            raise HTTPException(status_code=404, detail="User not found")

        if not quiz.options.allow_retake:
            existing = await Submission.find_one({"user_id": user_id, "quiz_id": quiz_id})
            if existing:
                raise HTTPException(status_code=400, detail="You have already submitted this quiz")

        # до этой точки ничего не пишется
        graded = grade_answers(quiz.questions, submit_data.answers)
        time_limit = quiz.time_limit_seconds
        result = summarize_submission(graded, quiz.compute_total_marks(), submit_data.time_taken, time_limit)

        end_time = datetime.utcnow()
        submission = Submission(
            user_id=user_id,
            quiz_id=quiz_id,
            answers=graded,
            score=result.score,
            total_marks=result.total_marks,
            percentage=result.percentage,
            correct_answers=result.correct_answers,
            incorrect_answers=result.incorrect_answers,
            skipped_answers=result.skipped_answers,
            grade=result.grade,
            performance=result.performance,
            time_taken=submit_data.time_taken,
            time_limit=time_limit,
            start_time=submit_data.start_time or end_time - timedelta(seconds=submit_data.time_taken),
            end_time=end_time,
            status=SubmissionStatus.TIMEOUT if submit_data.time_taken > time_limit else SubmissionStatus.COMPLETED,
            created_at=end_time,
        )
        await submission.insert()
        logger.info("User %s scored %d%% on quiz %s", user_id, result.percentage, quiz_id)

        stats_pending = False
        try:
            await self.apply_pending_submissions(user_id, exclude=submission.id)
            achievements = await self.apply_submission(submission)
        except HTTPException as e:
            if e.status_code != 409:
                raise
            # сабмишен сохранен, незавершенные агрегаты досчитает следующий сабмит или reconcile
            logger.warning("Aggregates of submission %s deferred: %s", submission.id, e.detail)
            achievements, stats_pending = [], True

        return SubmitResponse(
            submission_id=str(submission.id),
            time_taken=submission.time_taken,
            result=result,
            new_achievements=[
                AchievementOut(type=a.type.value, earned_at=a.earned_at, description=a.description)
                for a in achievements
            ],
            stats_pending=stats_pending,
            message="Quiz submitted successfully",
        )

    async def apply_submission(self, submission: Submission) -> List[Achievement]:
        """Агрегаты, запись лидерборда, затем ачивки. Ачивки видят уже обновленную статистику."""
        await apply_submission_stats(submission)
        await self.leaderboard_service.record_submission(submission)
        return await award_achievements(submission.user_id, submission)

    async def apply_pending_submissions(self, user_id: PydanticObjectId,
                                        exclude: Optional[PydanticObjectId] = None):
        """Досчитывает отложенные после конфликта сабмишены пользователя, от старых к новым"""
        match = {"user_id": user_id}
        if exclude is not None:
            match["_id"] = {"$ne": exclude}
        for pending in await pending_submissions(match):
            logger.info("Applying deferred aggregates of submission %s", pending.id)
            await apply_submission_stats(pending)
            await self.leaderboard_service.record_submission(pending)

    async def get_user_submissions(self, user_id: PydanticObjectId, page: int = 1, limit: int = 10,
                                   min_score: Optional[int] = None):
        query = {"user_id": user_id}
        if min_score is not None:
            query["percentage"] = {"$gte": min_score}

        submissions = await Submission.find(query).sort("-created_at").skip((page - 1) * limit).limit(limit).to_list()
        total = await Submission.find(query).count()

        quizzes = await Quiz.find({"_id": {"$in": list({s.quiz_id for s in submissions})}}).to_list()
        quiz_map = {quiz.id: quiz for quiz in quizzes}

        response = []
        for submission in submissions:
            quiz = quiz_map.get(submission.quiz_id)
            response.append({
                "id": str(submission.id),
                "quiz_id": str(submission.quiz_id),
                "quiz_title": quiz.title if quiz else None,
                "quiz_category": quiz.category if quiz else None,
                "score": submission.score,
                "total_marks": submission.total_marks,
                "percentage": submission.percentage,
                "grade": submission.grade,
                "time_taken": submission.time_taken,
                "created_at": submission.created_at,
            })

        return {"submissions": response, "total": total, "pagination": paginate(page, limit, total)}

    async def get_submission_details(self, submission_id: PydanticObjectId, user_id: PydanticObjectId):
        submission = await Submission.get(submission_id)
        if not submission:
            raise HTTPException(status_code=404, detail="Submission not found")
        if submission.user_id != user_id:
            raise HTTPException(status_code=403, detail="Access denied")

        quiz = await Quiz.get(submission.quiz_id)
        result = submission_result(submission)
        if quiz and not quiz.options.show_correct_answers:
            result = hide_correct_answers(result)
        return {
            "submission_id": str(submission.id),
            "quiz_id": str(submission.quiz_id),
            "quiz_title": quiz.title if quiz else None,
            "time_taken": submission.time_taken,
            "time_limit": submission.time_limit,
            "status": submission.status,
            "created_at": submission.created_at,
            "feedback": submission.feedback,
            "result": result.model_dump(by_alias=True),
        }

    async def add_submission_feedback(self, submission_id: PydanticObjectId, user_id: PydanticObjectId,
                                      feedback_data: FeedbackDTO):
        submission = await Submission.get(submission_id)
        if not submission:
            raise HTTPException(status_code=404, detail="Submission not found")
        if submission.user_id != user_id:
            raise HTTPException(status_code=403, detail="Access denied")

        feedback = SubmissionFeedback(rating=feedback_data.rating, comment=feedback_data.comment)
        # отзыв пишется один раз: условие feedback == None в том же update
        written = await Submission.get_motor_collection().update_one(
            {"_id": submission_id, "feedback": None},
            {"$set": {"feedback": feedback.model_dump()}},
        )
        if written.modified_count != 1:
            raise HTTPException(status_code=400, detail="Feedback already submitted")
        return {"message": "Feedback added successfully", "feedback": feedback}

    async def get_quiz_leaderboard(self, quiz_id: PydanticObjectId, limit: int = 10):
        """Лучшие попытки квиза: процент по убыванию, затем время по возрастанию"""
        submissions = await Submission.find(Submission.quiz_id == quiz_id).sort(
            "-percentage", "+time_taken"
        ).limit(limit).to_list()

        users = await User.find({"_id": {"$in": list({s.user_id for s in submissions})}}).to_list()
        user_map = {user.id: user for user in users}

        leaderboard = []
        for rank, submission in enumerate(submissions, start=1):
            user = user_map.get(submission.user_id)
            leaderboard.append({
                "rank": rank,
                "username": user.username if user else "Unknown",
                "full_name": user.full_name if user else "",
                "score": submission.score,
                "total_marks": submission.total_marks,
                "percentage": submission.percentage,
                "time_taken": submission.time_taken,
                "grade": submission.grade,
                "completed_at": submission.created_at,
            })
        return leaderboard

    async def get_quiz_stats(self, quiz_id: PydanticObjectId):
        quiz = await Quiz.get(quiz_id)
        if not quiz:
            raise HTTPException(status_code=404, detail="Quiz not found")

        rows = await Submission.get_motor_collection().aggregate([
            {"$match": {"quiz_id": quiz_id}},
            {"$group": {
                "_id": None,
                "total_attempts": {"$sum": 1},
                "average_score": {"$avg": "$percentage"},
                "highest_score": {"$max": "$percentage"},
                "lowest_score": {"$min": "$percentage"},
                "average_time": {"$avg": "$time_taken"},
            }},
        ]).to_list(length=1)

        detailed = {"total_attempts": 0, "average_score": 0, "highest_score": 0, "lowest_score": 0, "average_time": 0}
        if rows:
            detailed.update({key: value for key, value in rows[0].items() if key != "_id"})

        return {
            "quiz_info": {
                "title": quiz.title,
                "category": quiz.category,
                "difficulty": quiz.difficulty,
                "total_questions": quiz.total_questions,
                "total_marks": quiz.total_marks,
                "time_limit": quiz.time_limit,
            },
            "basic_stats": quiz.stats,
            "detailed_stats": detailed,
        }
