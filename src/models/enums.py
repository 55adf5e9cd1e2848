from enum import Enum


class QuestionType(str, Enum):
    MULTIPLE = "multiple"
    BOOLEAN = "boolean"


class QuizType(str, Enum):
    MULTIPLE = "multiple"
    BOOLEAN = "boolean"
    MIXED = "mixed"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class QuizDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    MIXED = "mixed"


class SubmissionStatus(str, Enum):
    COMPLETED = "completed"
    TIMEOUT = "timeout"


class AchievementType(str, Enum):
    FIRST_QUIZ = "first_quiz"
    PERFECT_SCORE = "perfect_score"
    SPEED_DEMON = "speed_demon"
    MASTER = "master"


# points per question
DIFFICULTY_POINTS = {
    Difficulty.EASY: 1,
    Difficulty.MEDIUM: 2,
    Difficulty.HARD: 3,
}
