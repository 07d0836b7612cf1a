# app/schemas/quiz.py
from typing import List
from pydantic import BaseModel, Field, model_validator
import uuid

class QuizQuestion(BaseModel):
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_option: int

    @model_validator(mode="after")
    def check_correct_option(self):
        if not 0 <= self.correct_option < len(self.options):
            raise ValueError(
                f"correct_option {self.correct_option} is not a valid index into {len(self.options)} options"
            )
        return self

class QuizRead(BaseModel):
    id: uuid.UUID
    task_id: uuid.UUID
    title: str
    questions: List[QuizQuestion]

    class Config:
        from_attributes = True

class QuizSubmission(BaseModel):
    # One selected option index per question; -1 means unanswered
    answers: List[int]

class QuizResult(BaseModel):
    task_id: uuid.UUID
    correct: int
    total: int
    score: float
    passed: bool
    task_completed: bool
    goal_completed: bool
