# app/utils/progress.py
from typing import Any, Dict, List, Sequence, Tuple

# Minimum quiz score (percent) that completes a task
QUIZ_PASS_THRESHOLD = 70.0


def calculate_progress(total: int, completed: int) -> int:
    """Completion percentage, rounded half up. A goal without tasks is at 0."""
    if total <= 0:
        return 0
    return (completed * 200 + total) // (2 * total)


def goal_progress(tasks: Sequence[Any]) -> Dict[str, int]:
    total = len(tasks)
    completed = sum(1 for task in tasks if task.completed)
    return {
        "total_tasks": total,
        "completed_tasks": completed,
        "progress_percentage": calculate_progress(total, completed),
    }


def score_quiz(questions: List[Dict[str, Any]], answers: List[int]) -> Tuple[int, int, float]:
    """
    Score submitted answers against stored questions.

    Returns (correct, total, score) where score is a percentage. Missing
    answers count as wrong; extra answers are ignored.
    """
    total = len(questions)
    if total == 0:
        return 0, 0, 0.0
    correct = 0
    for index, question in enumerate(questions):
        if index < len(answers) and answers[index] == question["correct_option"]:
            correct += 1
    return correct, total, round(correct / total * 100, 2)


def quiz_passed(score: float) -> bool:
    return score >= QUIZ_PASS_THRESHOLD


def fallback_summary(task_titles: Sequence[str]) -> str:
    return f"Includes tasks: {', '.join(task_titles)}"
