# app/schemas/generation.py
"""
Strict shapes for AI generated goal content. Payloads that do not match are
rejected at the generation boundary instead of being stored.
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field
import uuid

from app.schemas.quiz import QuizQuestion


class GeneratedTask(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    article_content: str = ""


class GeneratedTaskList(BaseModel):
    tasks: List[GeneratedTask] = Field(..., min_length=1)


class GeneratedQuiz(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    questions: List[QuizQuestion] = Field(..., min_length=1)
    task_index: int = Field(..., ge=0)


class GoalContent(BaseModel):
    goal_id: Optional[uuid.UUID] = None
    tasks: List[GeneratedTask]
    quizzes: List[GeneratedQuiz] = []


# Request bodies of the invoked-function endpoints
class GoalContentRequest(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = ""
    goal_id: Optional[uuid.UUID] = None


class GoalImageRequest(BaseModel):
    goalTitle: str = Field(..., min_length=1)
    goalId: uuid.UUID


class SummaryTask(BaseModel):
    title: str
    description: Optional[str] = None
    article_content: Optional[str] = None


class TaskSummaryRequest(BaseModel):
    tasks: List[SummaryTask] = []


class TaskSummaryResponse(BaseModel):
    summary: str


class ChatReplyRequest(BaseModel):
    message: str = Field(..., min_length=1)
    threadId: Optional[uuid.UUID] = None
    conciseMode: bool = False


class ChatReplyResponse(BaseModel):
    text: str
