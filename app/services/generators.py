# app/services/generators.py
"""
The four AI backed functions: goal content, goal image, task summary and
chat reply. Each one validates what comes back before anyone stores it.
"""
import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.exceptions import GenerationError, StoreError
from app.crud import goal as crud_goal
from app.schemas.generation import GeneratedQuiz, GeneratedTaskList, GoalContent
from app.services.ai_client import AIClient, get_ai_client
from app.services.image_loader import probe_image
from app.utils.goal_images import resolve_fallback_image

logger = logging.getLogger(__name__)

REPLICATE_API_URL = "https://api.replicate.com/v1"
REPLICATE_POLL_INTERVAL = 1.0
REPLICATE_MAX_POLLS = 60

SUMMARY_MAX_LENGTH = 200
NO_TASKS_SUMMARY = "No tasks available for this goal."

CHAT_APOLOGY = (
    "I'm sorry, I couldn't generate a response right now. "
    "Please try again in a moment."
)

TASKS_SYSTEM_PROMPT = (
    "You are a financial advisor helping to break down financial goals into actionable tasks. "
    "Each task should include educational content to help users understand the concepts involved. "
    'Respond with a JSON object of the form {"tasks": [{"title": str, "description": str, '
    '"article_content": str}]}.'
)

QUIZ_SYSTEM_PROMPT = (
    "You are creating an educational quiz based on financial concepts. "
    "Generate questions that test understanding of key concepts. "
    'Respond with a JSON object of the form {"title": str, "questions": [{"question": str, '
    '"options": [str], "correct_option": int}]} where correct_option is the 0-based index '
    "of the correct answer."
)

SUMMARY_SYSTEM_PROMPT = (
    "You are a financial assistant creating a concise summary of tasks for a financial goal. "
    f"Keep your summary under {SUMMARY_MAX_LENGTH} characters without listing individual tasks."
)

IMAGE_PROMPT_SYSTEM_PROMPT = (
    "You are a prompt generator for an image generation AI. Create a short, descriptive prompt "
    "for an image that represents the given concept. Focus on the concrete object or concept, "
    "not the financial aspect. The prompt should be for a beautiful, inspirational image with "
    "professional quality, vibrant colors, and realism. Do not include text in the image. "
    "Just return the prompt, nothing else."
)


def _parse_json(raw: str) -> Any:
    text = raw.strip()
    # Models sometimes wrap JSON in a markdown fence
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    return json.loads(text)


# ────────────────────────────────────────────────────────────────────────────────
# GOAL CONTENT
# ────────────────────────────────────────────────────────────────────────────────
async def _generate_quiz(client: AIClient, task_index: int, article_content: str, task_title: str) -> GeneratedQuiz:
    raw = await client.complete(
        [
            {"role": "system", "content": QUIZ_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Create a quiz with 3 questions based on this content:\n{article_content or task_title}",
            },
        ],
        model=settings.CONTENT_MODEL,
        json_mode=True,
    )
    payload = _parse_json(raw)
    if not isinstance(payload, dict):
        raise GenerationError("Quiz payload is not an object")
    return GeneratedQuiz.model_validate({**payload, "task_index": task_index})


async def generate_goal_content(
    title: str,
    description: Optional[str],
    goal_id: Optional[uuid.UUID] = None,
    client: Optional[AIClient] = None,
) -> GoalContent:
    """
    Break a goal into tasks and build one quiz per task.

    Raises GenerationError when the model call fails or the task list does not
    match the expected shape. A quiz that fails generation or validation is
    dropped on its own; the tasks are still returned.
    """
    client = client or get_ai_client()
    logger.info(f"Generating tasks for goal: {title}")

    raw = await client.complete(
        [
            {"role": "system", "content": TASKS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Generate 3-5 tasks for this financial goal:\nTitle: {title}\nDescription: {description or ''}",
            },
        ],
        model=settings.CONTENT_MODEL,
        json_mode=True,
    )
    try:
        task_list = GeneratedTaskList.model_validate(_parse_json(raw))
    except (ValueError, ValidationError) as e:
        raise GenerationError(f"Generated tasks did not match the expected shape: {e}") from e

    results = await asyncio.gather(
        *[
            _generate_quiz(client, index, task.article_content, task.title)
            for index, task in enumerate(task_list.tasks)
        ],
        return_exceptions=True,
    )

    quizzes: List[GeneratedQuiz] = []
    for index, result in enumerate(results):
        if isinstance(result, GeneratedQuiz):
            quizzes.append(result)
        elif isinstance(result, (GenerationError, ValidationError, ValueError)):
            logger.warning(f"Dropping quiz for task {index} of '{title}': {result}")
        elif isinstance(result, BaseException):
            raise result

    return GoalContent(goal_id=goal_id, tasks=task_list.tasks, quizzes=quizzes)


# ────────────────────────────────────────────────────────────────────────────────
# TASK SUMMARY
# ────────────────────────────────────────────────────────────────────────────────
def cap_summary(summary: str, limit: int = SUMMARY_MAX_LENGTH) -> str:
    summary = " ".join(summary.split())
    if len(summary) <= limit:
        return summary
    return summary[: limit - 3].rstrip() + "..."


async def generate_task_summary(tasks: Sequence[Dict[str, Any]], client: Optional[AIClient] = None) -> str:
    """Short description of a goal's tasks. Raises GenerationError on model failure."""
    if not tasks:
        return NO_TASKS_SUMMARY

    client = client or get_ai_client()
    task_data = [
        {
            "title": task.get("title"),
            "description": task.get("description"),
            "article_content": task.get("article_content"),
        }
        for task in tasks
    ]
    summary = await client.complete(
        [
            {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    "Here are the tasks for a financial goal:\n"
                    f"{json.dumps(task_data, indent=2)}\n\n"
                    "Create a brief summary that captures the essence of these tasks without listing them individually."
                ),
            },
        ],
        model=settings.SUMMARY_MODEL,
        max_tokens=100,
    )
    return cap_summary(summary)


# ────────────────────────────────────────────────────────────────────────────────
# CHAT REPLY
# ────────────────────────────────────────────────────────────────────────────────
async def generate_chat_reply(
    message: str,
    thread_id: Optional[uuid.UUID] = None,
    concise_mode: bool = False,
    client: Optional[AIClient] = None,
) -> Dict[str, str]:
    client = client or get_ai_client()
    logger.info(f"Processing financial advice request for thread {thread_id} (concise={concise_mode})")

    system_prompt = (
        "You are a helpful financial advisor chatbot. Provide educational, accurate, "
        "and actionable advice on personal finance topics."
    )
    if concise_mode:
        system_prompt += " Keep your responses concise, direct, and to-the-point, focusing on actionable steps."
    else:
        system_prompt += " You can be more detailed in your explanations, providing context and educational information."
    system_prompt += (
        " Format your responses using markdown for better readability. Use **bold** for important points,"
        " *italics* for emphasis, bullet points for lists, and ### for section headers when appropriate."
    )

    text = await client.complete(
        [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": message},
        ],
        model=settings.CHAT_MODEL,
        max_tokens=250 if concise_mode else 500,
    )
    return {"text": text}


def extract_reply_text(payload: Any) -> str:
    """Read the reply out of a responder payload (``text`` or ``answer``)."""
    if isinstance(payload, dict):
        for key in ("text", "answer"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
    raise GenerationError("Responder returned no text")


# ────────────────────────────────────────────────────────────────────────────────
# GOAL IMAGE
# ────────────────────────────────────────────────────────────────────────────────
async def generate_image_prompt(goal_title: str, client: Optional[AIClient] = None) -> str:
    client = client or get_ai_client()
    return await client.complete(
        [
            {"role": "system", "content": IMAGE_PROMPT_SYSTEM_PROMPT},
            {"role": "user", "content": f"Generate an image prompt for: {goal_title}"},
        ],
        model=settings.CHAT_MODEL,
    )


async def run_replicate(prompt: str, transport: Optional[httpx.AsyncBaseTransport] = None) -> str:
    """Create a prediction and wait for its first output URL."""
    if not settings.REPLICATE_API_TOKEN:
        raise GenerationError("REPLICATE_API_TOKEN is not set")

    headers = {
        "Authorization": f"Bearer {settings.REPLICATE_API_TOKEN}",
        "Content-Type": "application/json",
        "Prefer": "wait",
    }
    payload = {
        "input": {
            "prompt": prompt,
            "go_fast": True,
            "megapixels": "1",
            "num_outputs": 1,
            "aspect_ratio": "16:9",
            "output_format": "webp",
            "output_quality": 90,
            "num_inference_steps": 4,
        }
    }
    async with httpx.AsyncClient(timeout=settings.AI_TIMEOUT_SECONDS, transport=transport) as client:
        try:
            response = await client.post(
                f"{REPLICATE_API_URL}/models/{settings.REPLICATE_MODEL}/predictions",
                headers=headers,
                json=payload,
            )
            response.raise_for_status()
            prediction = response.json()

            polls = 0
            while prediction.get("status") in ("starting", "processing") and polls < REPLICATE_MAX_POLLS:
                await asyncio.sleep(REPLICATE_POLL_INTERVAL)
                polls += 1
                response = await client.get(prediction["urls"]["get"], headers=headers)
                response.raise_for_status()
                prediction = response.json()
        except (httpx.HTTPError, ValueError, KeyError) as e:
            raise GenerationError(f"Replicate request failed: {e}") from e

    if prediction.get("status") != "succeeded":
        raise GenerationError(f"Replicate prediction ended as {prediction.get('status')}: {prediction.get('error')}")

    output = prediction.get("output")
    image_url = output[0] if isinstance(output, list) and output else output
    if not isinstance(image_url, str) or not image_url.startswith("https://"):
        raise GenerationError(f"Invalid image URL format returned from Replicate: {image_url!r}")
    return image_url


async def generate_goal_image(
    goal_id: uuid.UUID,
    goal_title: str,
    session_factory=AsyncSessionLocal,
    client: Optional[AIClient] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    probe=probe_image,
) -> Dict[str, Any]:
    """
    Generate an image for a goal and store it on the goal row.

    On any generation failure the preset fallback image is stored instead, so
    the row always leaves the loading state. The return value is advisory.
    """
    logger.info(f"Generating image for goal: \"{goal_title}\" (ID: {goal_id})")
    try:
        prompt = await generate_image_prompt(goal_title, client)
        image_url = await run_replicate(prompt, transport)
    except GenerationError as e:
        logger.error(f"Error during image generation for goal {goal_id}: {e}")
        fallback = resolve_fallback_image(goal_title)
        await _store_goal_image(session_factory, goal_id, fallback)
        return {
            "error": "Failed to generate image, fallback image assigned",
            "details": str(e),
            "fallback_image": fallback,
        }

    if not await probe(image_url, settings.IMAGE_PROBE_TIMEOUT_SECONDARY):
        # Delivery URLs can lag behind the prediction; store it and let clients retry
        logger.warning(f"Generated image for goal {goal_id} did not answer the probe yet: {image_url}")

    await _store_goal_image(session_factory, goal_id, image_url)
    logger.info(f"Goal image generated and stored: {image_url}")
    return {
        "output": image_url,
        "message": "Image generated and saved to goal record",
        "prompt": prompt,
    }


async def _store_goal_image(session_factory, goal_id: uuid.UUID, image_url: str) -> None:
    async with session_factory() as db:
        try:
            updated = await crud_goal.set_goal_image(goal_id, image_url, db)
        except SQLAlchemyError as e:
            await db.rollback()
            raise StoreError("set_goal_image", str(e)) from e
    if not updated:
        logger.warning(f"Goal {goal_id} disappeared before its image was stored")
