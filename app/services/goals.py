# app/services/goals.py
"""
Goal, task and quiz operations, plus the background pipeline that fills a
new goal with generated content and an image.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import GenerationError, StoreError
from app.crud import goal as crud_goal
from app.crud import quiz as crud_quiz
from app.crud import subscription as crud_subscription
from app.crud import task as crud_task
from app.models.quiz import Quiz
from app.models.task import Task
from app.schemas.goal import GoalCreate, GoalProgressResponse, GoalState, GoalUpdate
from app.schemas.quiz import QuizResult, QuizSubmission
from app.schemas.task import TaskCreate
from app.services import generators
from app.services.goal_board import GoalBoard
from app.services.limits import ensure_can_create_goal
from app.utils.goal_images import resolve_fallback_image
from app.utils.notifications import notify, notify_error, notify_goal_completed
from app.utils.progress import fallback_summary, goal_progress, quiz_passed, score_quiz

logger = logging.getLogger(__name__)


async def _store_failure(db: AsyncSession, user_id: uuid.UUID, operation: str, title: str, error: SQLAlchemyError,
                         goal_id: Optional[uuid.UUID] = None) -> StoreError:
    """Roll back, log and report a failed store write; returns the error to raise."""
    await db.rollback()
    logger.error(f"{operation} failed for user {user_id}: {error}")
    await notify_error(db, user_id, title, "Something went wrong while saving. Please try again.", "goal", goal_id=goal_id)
    return StoreError(operation, str(error))


# ────────────────────────────────────────────────────────────────────────────────
# GOALS
# ────────────────────────────────────────────────────────────────────────────────
async def list_goals(db: AsyncSession, user_id: uuid.UUID, board: GoalBoard) -> List[GoalState]:
    rows = await crud_goal.get_goals_for_user(user_id, db)
    return board.sync(rows)


async def create_goal(db: AsyncSession, user_id: uuid.UUID, goal_in: GoalCreate, board: GoalBoard) -> GoalState:
    """
    Create a goal on its preset image, then start the image watch and the
    content pipeline in the background. Raises PlanLimitReached before
    anything is written when the plan's goal cap is hit.
    """
    await ensure_can_create_goal(user_id, db)

    try:
        goal = await crud_goal.create_goal_for_user(user_id, goal_in, resolve_fallback_image(goal_in.title), db)
    except SQLAlchemyError as e:
        raise await _store_failure(db, user_id, "create_goal", "Goal creation failed", e)

    try:
        await crud_subscription.increment_usage(user_id, db, goals=1)
    except SQLAlchemyError as e:
        # The goal is committed; a missed counter does not undo it
        await db.rollback()
        logger.error(f"Usage tracking failed after creating goal {goal.id}: {e}")

    state = board.track(goal)
    board.watch(goal.id, goal.title)
    board.spawn(run_goal_pipeline(board, goal.id, goal.title, goal.description), name=f"pipeline:{goal.id}")
    logger.info(f"Created goal {goal.id} for user {user_id}")
    return state


async def update_goal(db: AsyncSession, user_id: uuid.UUID, goal_id: uuid.UUID, goal_in: GoalUpdate,
                      board: GoalBoard) -> Optional[GoalState]:
    goal = await crud_goal.get_goal_by_id(goal_id, user_id, db)
    if goal is None:
        return None
    try:
        goal = await crud_goal.update_goal(goal, goal_in, db)
    except SQLAlchemyError as e:
        raise await _store_failure(db, user_id, "update_goal", "Goal update failed", e, goal_id)
    if board.get(goal_id) is None:
        return board.track(goal)
    return board.patch(goal_id, **goal_in.model_dump(exclude_unset=True))


async def delete_goal(db: AsyncSession, user_id: uuid.UUID, goal_id: uuid.UUID, board: GoalBoard) -> bool:
    goal = await crud_goal.get_goal_by_id(goal_id, user_id, db)
    if goal is None:
        return False
    try:
        await crud_goal.delete_goal(goal, db)
    except SQLAlchemyError as e:
        raise await _store_failure(db, user_id, "delete_goal", "Goal deletion failed", e, goal_id)
    board.remove(goal_id)
    return True


async def get_progress(db: AsyncSession, user_id: uuid.UUID, goal_id: uuid.UUID) -> Optional[GoalProgressResponse]:
    goal = await crud_goal.get_goal_by_id(goal_id, user_id, db)
    if goal is None:
        return None
    tasks = await crud_task.get_tasks_for_goal(goal_id, db)
    return GoalProgressResponse(goal_id=goal_id, summary=goal.task_summary, **goal_progress(tasks))


# ────────────────────────────────────────────────────────────────────────────────
# CONTENT PIPELINE
# ────────────────────────────────────────────────────────────────────────────────
async def run_goal_pipeline(board: GoalBoard, goal_id: uuid.UUID, title: str, description: Optional[str]) -> None:
    """
    Content and image generation for a new goal. The two branches run
    concurrently and fail independently; each reports its own errors.
    """
    await asyncio.gather(
        populate_goal_content(board, goal_id, title, description),
        populate_goal_image(board, goal_id, title),
    )


async def populate_goal_content(board: GoalBoard, goal_id: uuid.UUID, title: str, description: Optional[str]) -> None:
    user_id = board.user_id
    async with board.session_factory() as db:
        try:
            content = await generators.generate_goal_content(title, description, goal_id)
        except GenerationError as e:
            logger.error(f"Content generation failed for goal {goal_id}: {e}")
            await notify_error(db, user_id, "Task generation failed",
                               f"We couldn't generate tasks for \"{title}\". You can add tasks manually.",
                               "task", goal_id=goal_id)
            return

        try:
            tasks = await crud_task.create_tasks(goal_id, [task.model_dump() for task in content.tasks], db)
            for quiz in content.quizzes:
                if quiz.task_index >= len(tasks):
                    logger.warning(f"Quiz '{quiz.title}' points at missing task {quiz.task_index}; skipped")
                    continue
                await crud_quiz.create_quiz(
                    tasks[quiz.task_index].id,
                    quiz.title,
                    [question.model_dump() for question in quiz.questions],
                    db,
                )
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Storing generated content failed for goal {goal_id}: {e}")
            await notify_error(db, user_id, "Task generation failed",
                               f"We couldn't save the tasks for \"{title}\".", "task", goal_id=goal_id)
            return

        board.task_order.remember(goal_id, tasks)
        logger.info(f"Stored {len(tasks)} tasks and {len(content.quizzes)} quizzes for goal {goal_id}")

        task_dicts = [task.model_dump() for task in content.tasks]
        try:
            summary = await generators.generate_task_summary(task_dicts)
        except GenerationError as e:
            logger.warning(f"Summary generation failed for goal {goal_id}, using task titles: {e}")
            summary = fallback_summary([task.title for task in content.tasks])

        try:
            await crud_goal.set_task_summary(goal_id, summary, db)
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"Storing task summary failed for goal {goal_id}: {e}")
            return
        board.patch(goal_id, task_summary=summary)


async def populate_goal_image(board: GoalBoard, goal_id: uuid.UUID, title: str) -> None:
    try:
        result = await generators.generate_goal_image(
            goal_id, title, session_factory=board.session_factory, probe=board.probe
        )
    except StoreError as e:
        logger.error(f"Image generation could not be stored for goal {goal_id}: {e}")
        async with board.session_factory() as db:
            await notify_error(db, board.user_id, "Image generation failed",
                               f"We couldn't save an image for \"{title}\".", "image", goal_id=goal_id)
        return

    if "error" in result:
        async with board.session_factory() as db:
            await notify(db, board.user_id, "Using a default image",
                         f"We couldn't generate a custom image for \"{title}\", so a default one was assigned.",
                         "image", status="info", goal_id=goal_id)


# ────────────────────────────────────────────────────────────────────────────────
# TASKS & QUIZZES
# ────────────────────────────────────────────────────────────────────────────────
async def list_tasks(db: AsyncSession, user_id: uuid.UUID, goal_id: uuid.UUID, board: GoalBoard) -> Optional[List[Task]]:
    goal = await crud_goal.get_goal_by_id(goal_id, user_id, db)
    if goal is None:
        return None
    tasks = await crud_task.get_tasks_for_goal(goal_id, db)
    return board.task_order.sort(goal_id, tasks)


async def add_task(db: AsyncSession, user_id: uuid.UUID, goal_id: uuid.UUID, task_in: TaskCreate) -> Optional[Task]:
    goal = await crud_goal.get_goal_by_id(goal_id, user_id, db)
    if goal is None:
        return None
    try:
        return await crud_task.create_task(goal_id, task_in, db)
    except SQLAlchemyError as e:
        raise await _store_failure(db, user_id, "create_task", "Task creation failed", e, goal_id)


async def set_task_status(db: AsyncSession, user_id: uuid.UUID, task_id: uuid.UUID, completed: bool,
                          board: GoalBoard) -> Optional[Tuple[Task, bool]]:
    """
    Toggle a task. The goal's completed flag follows its tasks: it is set
    when every task is done and cleared when one is reopened.

    Returns (task, goal_completed) or None when the task does not exist.
    """
    task = await crud_task.get_task_for_user(task_id, user_id, db)
    if task is None:
        return None
    goal_id = task.goal_id
    try:
        task = await crud_task.set_task_completed(task, completed, db)
        goal = await crud_goal.get_goal(goal_id, db)
        all_done = await crud_task.all_tasks_completed(goal_id, db)
        newly_completed = all_done and not goal.completed
        if goal.completed != all_done:
            goal = await crud_goal.set_goal_completed(goal, all_done, db)
    except SQLAlchemyError as e:
        raise await _store_failure(db, user_id, "set_task_status", "Task update failed", e, goal_id)

    board.patch(goal_id, completed=goal.completed)
    if newly_completed:
        await notify_goal_completed(db, user_id, goal_id, goal.title)
    return task, goal.completed


async def get_quiz(db: AsyncSession, user_id: uuid.UUID, task_id: uuid.UUID) -> Tuple[Optional[Task], Optional[Quiz]]:
    """(task, quiz); the quiz is None when the task has none."""
    task = await crud_task.get_task_for_user(task_id, user_id, db)
    if task is None:
        return None, None
    return task, await crud_quiz.get_quiz_for_task(task_id, db)


async def submit_quiz(db: AsyncSession, user_id: uuid.UUID, task_id: uuid.UUID, submission: QuizSubmission,
                      board: GoalBoard) -> Optional[QuizResult]:
    task, quiz = await get_quiz(db, user_id, task_id)
    if task is None or quiz is None:
        return None

    correct, total, score = score_quiz(quiz.questions, submission.answers)
    passed = quiz_passed(score)
    task_completed = task.completed
    goal_completed = False
    if passed and not task.completed:
        outcome = await set_task_status(db, user_id, task_id, True, board)
        if outcome is not None:
            task_completed = True
            goal_completed = outcome[1]
    elif task.completed:
        goal = await crud_goal.get_goal(task.goal_id, db)
        goal_completed = bool(goal and goal.completed)

    return QuizResult(
        task_id=task_id,
        correct=correct,
        total=total,
        score=score,
        passed=passed,
        task_completed=task_completed,
        goal_completed=goal_completed,
    )
