import asyncio
import uuid
from types import SimpleNamespace

import pytest
from sqlalchemy import func, select

from app.core.exceptions import GenerationError, PlanLimitReached
from app.crud import goal as crud_goal
from app.crud import quiz as crud_quiz
from app.crud import subscription as crud_subscription
from app.crud import task as crud_task
from app.models.goal import Goal
from app.models.notification import Notification
from app.models.quiz import Quiz
from app.models.subscription import SubscriptionPlan
from app.models.task import Task
from app.schemas.generation import GeneratedQuiz, GeneratedTask, GoalContent
from app.schemas.goal import GoalCreate, GoalUpdate
from app.schemas.quiz import QuizQuestion, QuizSubmission
from app.schemas.task import TaskCreate
from app.services import generators
from app.services import goals as goal_service
from app.services.goal_board import GoalBoard, TaskOrderCache
from app.utils.goal_images import DEFAULT_IMAGES, resolve_fallback_image

REMOTE = "https://replicate.delivery/xezq/out-0.webp"


async def always_ok(url, timeout):
    return True


async def wait_until(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def _content(goal_id=None):
    return GoalContent(
        goal_id=goal_id,
        tasks=[
            GeneratedTask(title="Open a high-yield account", description="d1", article_content="a1"),
            GeneratedTask(title="Automate transfers", description="d2", article_content="a2"),
        ],
        quizzes=[
            GeneratedQuiz(
                title="Savings basics",
                task_index=0,
                questions=[QuizQuestion(question="APY means?", options=["yield", "fee"], correct_option=0)],
            ),
            GeneratedQuiz(
                title="Points at nothing",
                task_index=7,
                questions=[QuizQuestion(question="?", options=["a", "b"], correct_option=1)],
            ),
        ],
    )


@pytest.fixture
def content_ok(monkeypatch):
    async def fake_content(title, description, goal_id=None, client=None):
        return _content(goal_id)

    async def fake_summary(tasks, client=None):
        return "Build an automated savings habit."

    async def fake_image(goal_id, goal_title, session_factory=None, probe=None, **kwargs):
        async with session_factory() as db:
            await crud_goal.set_goal_image(goal_id, REMOTE, db)
        return {"output": REMOTE, "message": "Image generated and saved to goal record", "prompt": "a jar"}

    monkeypatch.setattr(generators, "generate_goal_content", fake_content)
    monkeypatch.setattr(generators, "generate_task_summary", fake_summary)
    monkeypatch.setattr(generators, "generate_goal_image", fake_image)


@pytest.fixture
async def board(session_factory, user, fast_policy):
    board = GoalBoard(user.id, session_factory=session_factory, policy=fast_policy, probe=always_ok)
    yield board
    await board.close()


async def _count(session_factory, model, *where):
    async with session_factory() as db:
        return (await db.execute(select(func.count()).select_from(model).where(*where))).scalar_one()


async def _notifications(session_factory, user_id):
    async with session_factory() as db:
        result = await db.execute(select(Notification).where(Notification.user_id == user_id))
        return result.scalars().all()


async def test_new_goal_starts_on_its_fallback_image(db, user, board, content_ok):
    state = await goal_service.create_goal(db, user.id, GoalCreate(title="Save for a house"), board)

    assert state.image_url == resolve_fallback_image("Save for a house")
    assert state.image_loading is True
    assert board.get(state.id) is not None
    record = await crud_subscription.get_usage_for_day(user.id, db)
    assert record.goals_created == 1


async def test_pipeline_fills_tasks_quizzes_summary_and_image(db, user, board, session_factory, content_ok):
    state = await goal_service.create_goal(db, user.id, GoalCreate(title="Emergency fund"), board)

    await wait_until(lambda: board.get(state.id).task_summary is not None)
    await wait_until(lambda: not board.get(state.id).image_loading)

    goal_state = board.get(state.id)
    assert goal_state.task_summary == "Build an automated savings habit."
    assert goal_state.image_url.startswith(REMOTE + "?t=")
    assert goal_state.image_refresh is True
    assert state.id in board.image_cache

    tasks = await crud_task.get_tasks_for_goal(state.id, db)
    assert [task.order_number for task in tasks] == [0, 1]
    # The quiz pointing past the task list is skipped
    assert await _count(session_factory, Quiz) == 1


async def test_goal_limit_is_checked_before_insert(db, user, board, content_ok):
    await goal_service.create_goal(db, user.id, GoalCreate(title="First"), board)

    with pytest.raises(PlanLimitReached):
        await goal_service.create_goal(db, user.id, GoalCreate(title="Second"), board)

    assert len(await crud_goal.get_goals_for_user(user.id, db)) == 1


async def test_content_failure_is_reported_and_goal_kept(db, user, board, session_factory, monkeypatch):
    async def broken_content(title, description, goal_id=None, client=None):
        raise GenerationError("Both models failed")

    async def no_image(goal_id, goal_title, session_factory=None, probe=None, **kwargs):
        return {"output": None}

    monkeypatch.setattr(generators, "generate_goal_content", broken_content)
    monkeypatch.setattr(generators, "generate_goal_image", no_image)

    state = await goal_service.create_goal(db, user.id, GoalCreate(title="Trip"), board)

    async def reported():
        return any(n.title == "Task generation failed" for n in await _notifications(session_factory, user.id))

    await wait_until(reported)
    notification = [n for n in await _notifications(session_factory, user.id) if n.status == "error"][0]
    assert notification.goal_id == state.id
    assert await _count(session_factory, Task, Task.goal_id == state.id) == 0
    assert await _count(session_factory, Goal, Goal.id == state.id) == 1


async def test_summary_failure_falls_back_to_task_titles(db, user, board, content_ok, monkeypatch):
    async def broken_summary(tasks, client=None):
        raise GenerationError("timeout")

    monkeypatch.setattr(generators, "generate_task_summary", broken_summary)

    state = await goal_service.create_goal(db, user.id, GoalCreate(title="Car"), board)
    await wait_until(lambda: board.get(state.id).task_summary is not None)

    assert board.get(state.id).task_summary == "Includes tasks: Open a high-yield account, Automate transfers"


async def test_image_failure_stores_fallback(db, user, board, session_factory, monkeypatch):
    async def fake_content(title, description, goal_id=None, client=None):
        return _content(goal_id)

    monkeypatch.setattr(generators, "generate_goal_content", fake_content)
    # Without an API key the real image generator fails before any network call

    state = await goal_service.create_goal(db, user.id, GoalCreate(title="Wedding"), board)

    async def stored():
        async with session_factory() as check_db:
            goal = await crud_goal.get_goal(state.id, check_db)
            return not goal.image_loading

    await wait_until(stored)
    async with session_factory() as check_db:
        goal = await crud_goal.get_goal(state.id, check_db)
    assert goal.image_url == resolve_fallback_image("Wedding")

    async def notified():
        return any(n.title == "Using a default image" for n in await _notifications(session_factory, user.id))

    await wait_until(notified)
    await wait_until(lambda: not board.get(state.id).image_loading)
    assert board.get(state.id).image_url == resolve_fallback_image("Wedding")


async def test_update_merges_into_the_cached_goal(db, user, board, content_ok):
    state = await goal_service.create_goal(db, user.id, GoalCreate(title="Car"), board)

    updated = await goal_service.update_goal(db, user.id, state.id, GoalUpdate(description="Used, under 10k"), board)

    assert updated.description == "Used, under 10k"
    assert updated.title == "Car"
    assert board.get(state.id).description == "Used, under 10k"


async def test_delete_cascades_to_tasks_and_quizzes(db, user, board, session_factory, content_ok):
    state = await goal_service.create_goal(db, user.id, GoalCreate(title="House"), board)
    await wait_until(lambda: board.get(state.id).task_summary is not None)

    assert await goal_service.delete_goal(db, user.id, state.id, board) is True

    assert board.get(state.id) is None
    assert await _count(session_factory, Task) == 0
    assert await _count(session_factory, Quiz) == 0
    assert await goal_service.delete_goal(db, user.id, state.id, board) is False


async def _goal_with_tasks(db, user, titles):
    goal = Goal(user_id=user.id, title="Debt free", image_url=DEFAULT_IMAGES[0], image_loading=False)
    db.add(goal)
    await db.commit()
    tasks = [await crud_task.create_task(goal.id, TaskCreate(title=title), db) for title in titles]
    return goal, tasks


async def test_add_task_appends_after_existing(db, user):
    goal, tasks = await _goal_with_tasks(db, user, ["List debts", "Pick a method"])

    task = await goal_service.add_task(db, user.id, goal.id, TaskCreate(title="Call lenders"))

    assert [t.order_number for t in tasks] == [0, 1]
    assert task.order_number == 2


async def test_progress_follows_task_completion(db, user, board):
    goal, tasks = await _goal_with_tasks(db, user, ["a", "b", "c", "d"])
    for task in (tasks[1], tasks[3]):
        await goal_service.set_task_status(db, user.id, task.id, True, board)

    progress = await goal_service.get_progress(db, user.id, goal.id)

    assert progress.total_tasks == 4
    assert progress.completed_tasks == 2
    assert progress.progress_percentage == 50


async def test_completing_every_task_completes_the_goal(db, user, board, session_factory):
    goal, tasks = await _goal_with_tasks(db, user, ["a", "b"])

    _, goal_done = await goal_service.set_task_status(db, user.id, tasks[0].id, True, board)
    assert goal_done is False
    _, goal_done = await goal_service.set_task_status(db, user.id, tasks[1].id, True, board)
    assert goal_done is True
    assert any(n.title == "Goal Completed!" for n in await _notifications(session_factory, user.id))

    _, goal_done = await goal_service.set_task_status(db, user.id, tasks[1].id, False, board)
    assert goal_done is False


async def test_tasks_of_other_users_are_not_found(db, user, other_user, board):
    goal, tasks = await _goal_with_tasks(db, user, ["a"])

    assert await goal_service.set_task_status(db, other_user.id, tasks[0].id, True, board) is None
    assert await goal_service.get_progress(db, other_user.id, goal.id) is None


async def test_missing_quiz_is_not_an_error(db, user):
    goal, tasks = await _goal_with_tasks(db, user, ["a"])

    task, quiz = await goal_service.get_quiz(db, user.id, tasks[0].id)

    assert task.id == tasks[0].id
    assert quiz is None


async def test_passing_quiz_completes_the_task(db, user, board):
    goal, tasks = await _goal_with_tasks(db, user, ["a", "b"])
    questions = [
        {"question": "q1", "options": ["x", "y"], "correct_option": 1},
        {"question": "q2", "options": ["x", "y"], "correct_option": 0},
        {"question": "q3", "options": ["x", "y"], "correct_option": 0},
    ]
    await crud_quiz.create_quiz(tasks[0].id, "Basics", questions, db)

    failed = await goal_service.submit_quiz(db, user.id, tasks[0].id, QuizSubmission(answers=[1, 1, 1]), board)
    assert failed.passed is False
    assert failed.task_completed is False

    partial = await goal_service.submit_quiz(db, user.id, tasks[0].id, QuizSubmission(answers=[1, 0, 1]), board)
    assert partial.score == 66.67
    assert partial.passed is False

    passed = await goal_service.submit_quiz(db, user.id, tasks[0].id, QuizSubmission(answers=[1, 0, 0]), board)
    assert passed.passed is True
    assert passed.task_completed is True
    assert passed.goal_completed is False


def test_task_order_cache_keeps_first_seen_order():
    a, b, c = (SimpleNamespace(id=uuid.uuid4(), order_number=n) for n in range(3))
    cache = TaskOrderCache()
    goal_id = uuid.uuid4()

    cache.remember(goal_id, [b, a])
    assert cache.sort(goal_id, [a, c, b]) == [b, a, c]

    cache.forget(goal_id)
    assert cache.sort(goal_id, [c, a, b]) == [c, a, b]


async def test_sync_drops_goals_deleted_elsewhere(db, user, board):
    goal, _ = await _goal_with_tasks(db, user, [])
    await goal_service.list_goals(db, user.id, board)
    assert board.get(goal.id) is not None

    await db.delete(goal)
    await db.commit()
    goals = await goal_service.list_goals(db, user.id, board)

    assert goals == []
    assert board.get(goal.id) is None


async def test_sync_keeps_a_settled_image(db, user, board):
    goal = Goal(user_id=user.id, title="Boat", image_url=DEFAULT_IMAGES[0], image_loading=True)
    db.add(goal)
    await db.commit()
    # Listing a loading goal starts the background sweep
    await goal_service.list_goals(db, user.id, board)
    await crud_goal.set_goal_image(goal.id, REMOTE, db)
    await wait_until(lambda: goal.id in board.image_cache)
    settled_url = board.get(goal.id).image_url
    assert settled_url.startswith(REMOTE + "?t=")

    goals = await goal_service.list_goals(db, user.id, board)

    assert goals[0].image_url == settled_url
    assert goals[0].image_loading is False

    # Nothing is loading any more, so the sweep has wound down
    await wait_until(lambda: not board.poller.sweeping)
    assert board.ensure_sweep() is None
    assert board.scheduler.pending == 0


async def test_board_image_view_and_retry(db, user, session_factory, fast_policy):
    results = [False, True]

    async def flaky(url, timeout):
        return results.pop(0)

    goal = Goal(user_id=user.id, title="Boat", image_url=REMOTE, image_loading=False)
    db.add(goal)
    await db.commit()
    board = GoalBoard(user.id, session_factory=session_factory, policy=fast_policy, probe=flaky)
    try:
        await goal_service.list_goals(db, user.id, board)

        view = await board.image_view(goal.id)
        assert view.has_error
        assert view.display_url == resolve_fallback_image("Boat")
        assert board.get(goal.id).image_error is True

        view = await board.retry_image(goal.id)
        assert view.has_loaded
        assert view.attempts == 1
        assert board.get(goal.id).image_error is False
    finally:
        await board.close()
