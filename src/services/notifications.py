import logging
from datetime import datetime

from beanie import PydanticObjectId

from src.helpers.mailer import EmailSender
from src.models.quiz import Quiz
from src.models.submission import Submission
from src.models.user import User

logger = logging.getLogger(__name__)


def render_quiz_results(user: User, submission: Submission, quiz: Quiz):
    subject = f"Your results for \"{quiz.title}\": {submission.percentage}% ({submission.grade})"
    lines = [
        f"Hi {user.first_name or user.username},",
        "",
        f"You completed \"{quiz.title}\" ({quiz.category}).",
        "",
        f"Score: {submission.score}/{submission.total_marks} ({submission.percentage}%)",
        f"Grade: {submission.grade} - {submission.performance}",
        f"Correct: {submission.correct_answers}, incorrect: {submission.incorrect_answers}, "
        f"skipped: {submission.skipped_answers}",
        f"Time taken: {int(submission.time_taken // 60)}m {int(submission.time_taken % 60)}s",
        "",
        "Keep practicing!",
    ]
    return subject, "\n".join(lines)


async def send_quiz_results(submission_id: PydanticObjectId, sender: EmailSender = None):
    """Фоновая отправка результатов. Ошибки только логируются и не повторяются."""
    sender = sender or EmailSender()
    try:
        submission = await Submission.get(submission_id)
        if not submission:
            logger.warning("Submission %s vanished before results email", submission_id)
            return
        user = await User.get(submission.user_id)
        if not user or not user.preferences.email_notifications:
            return
        quiz = await Quiz.get(submission.quiz_id)
        if not quiz:
            return

        subject, body = render_quiz_results(user, submission, quiz)
        if await sender.send(user.email, subject, body):
            await submission.set({
                Submission.email_sent: True,
                Submission.email_sent_at: datetime.utcnow(),
            })
    except Exception:
        logger.exception("Sending quiz results for submission %s failed", submission_id)
