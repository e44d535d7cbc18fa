"""Quiz session state machine and scoring.

A Session walks ``lobby -> question -> results -> question -> ... -> finished``.
Every operation is synchronous and signals failure with ``None``/``False``
instead of raising, so the caller decides what the participant is told.
"""
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union
import math
import time
import logging

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

import config

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class WireModel(BaseModel):
    """Base for everything that goes out over the socket in camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class SessionState(str, Enum):
    LOBBY = "lobby"
    QUESTION = "question"
    RESULTS = "results"
    FINISHED = "finished"


class Question(WireModel):
    model_config = ConfigDict(frozen=True)

    id: Union[int, str]
    text: str
    options: Tuple[str, ...]
    correct_option_index: int
    image_url: Optional[str] = None


class Participant(WireModel):
    connection_id: str = Field(alias="socketId")
    display_name: str = Field(alias="nickname")
    score: int = 0
    is_host: bool = False


class Answer(WireModel):
    model_config = ConfigDict(frozen=True)

    option_index: int
    is_correct: bool
    answered_at: float
    time_elapsed_seconds: float
    points_earned: int


class LeaderboardEntry(WireModel):
    nickname: str
    score: int


class RoundResults(WireModel):
    correct_answer: int
    correct_count: int
    incorrect_count: int
    leaderboard: List[LeaderboardEntry]


def score_answer(is_correct: bool, elapsed_seconds: float) -> int:
    """Points for one answer: 1000 minus 10 per elapsed second, floored at 500.

    Wrong answers earn nothing. A negative elapsed time (clock stepped
    backwards) counts as an instant answer.
    """
    if not is_correct:
        return 0
    elapsed_seconds = max(0.0, elapsed_seconds)
    penalty = math.floor(elapsed_seconds * config.POINTS_LOST_PER_SECOND)
    return max(config.MIN_CORRECT_POINTS, config.MAX_POINTS - penalty)


class Session:
    def __init__(self, code: str, host_id: str, title: str,
                 questions: List[Question], clock: Clock = time.time):
        self.code = code
        self.host_id = host_id
        self.title = title
        self.questions: Tuple[Question, ...] = tuple(questions)
        self.current_question_index = -1
        self.state = SessionState.LOBBY
        self.participants: Dict[str, Participant] = {}  # connection_id -> Participant
        self.current_answers: Dict[str, Answer] = {}  # connection_id -> Answer, active question only
        self.question_started_at: Optional[float] = None
        self._clock = clock
        self.created_at = clock()

        self.participants[host_id] = Participant(
            connection_id=host_id,
            display_name=config.HOST_DISPLAY_NAME,
            is_host=True,
        )

    # --- read helpers ---

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def question_number(self) -> int:
        """1-based ordinal of the active question, 0 before start."""
        return self.current_question_index + 1

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_question_index < len(self.questions):
            return self.questions[self.current_question_index]
        return None

    @property
    def answered_count(self) -> int:
        return len(self.current_answers)

    def is_host(self, connection_id: str) -> bool:
        return connection_id == self.host_id

    def has_answered(self, connection_id: str) -> bool:
        return connection_id in self.current_answers

    def get_participants(self) -> List[Participant]:
        return list(self.participants.values())

    def leaderboard(self) -> List[LeaderboardEntry]:
        # sorted() is stable, so equal scores keep join order
        ranked = sorted(
            (p for p in self.participants.values() if not p.is_host),
            key=lambda p: p.score,
            reverse=True,
        )
        return [LeaderboardEntry(nickname=p.display_name, score=p.score) for p in ranked]

    # --- transitions ---

    def join(self, connection_id: str, display_name: str) -> Optional[Participant]:
        if self.state != SessionState.LOBBY:
            return None
        # Rejoining would replace the entry and could strip the host flag
        if connection_id in self.participants:
            return None
        participant = Participant(connection_id=connection_id, display_name=display_name)
        self.participants[connection_id] = participant
        logger.info("Participant '%s' joined session %s", display_name, self.code)
        return participant

    def start(self) -> Optional[Question]:
        if self.state != SessionState.LOBBY or not self.questions:
            return None
        logger.info("Session %s started (%d questions)", self.code, len(self.questions))
        return self._begin_question(0)

    def next_question(self) -> Optional[Question]:
        if self.state != SessionState.RESULTS:
            return None
        next_index = self.current_question_index + 1
        if next_index >= len(self.questions):
            self.current_question_index = next_index
            self.state = SessionState.FINISHED
            self.question_started_at = None
            logger.info("Session %s finished", self.code)
            return None
        return self._begin_question(next_index)

    def _begin_question(self, index: int) -> Question:
        self.current_question_index = index
        self.state = SessionState.QUESTION
        self.question_started_at = self._clock()
        self.current_answers = {}
        return self.questions[index]

    def submit_answer(self, connection_id: str, option_index: int) -> bool:
        if self.state != SessionState.QUESTION or self.question_started_at is None:
            return False
        if connection_id in self.current_answers:
            return False
        participant = self.participants.get(connection_id)
        if participant is None:
            return False

        question = self.questions[self.current_question_index]
        answered_at = self._clock()
        elapsed = answered_at - self.question_started_at
        is_correct = option_index == question.correct_option_index
        points = score_answer(is_correct, elapsed)

        self.current_answers[connection_id] = Answer(
            option_index=option_index,
            is_correct=is_correct,
            answered_at=answered_at,
            time_elapsed_seconds=elapsed,
            points_earned=points,
        )
        participant.score += points
        logger.debug("Session %s: %s answered %d after %.2fs (+%d)",
                     self.code, connection_id, option_index, elapsed, points)
        return True

    def show_results(self) -> Optional[RoundResults]:
        if self.state != SessionState.QUESTION:
            return None
        self.state = SessionState.RESULTS

        question = self.questions[self.current_question_index]
        correct_count = sum(1 for a in self.current_answers.values() if a.is_correct)
        return RoundResults(
            correct_answer=question.correct_option_index,
            correct_count=correct_count,
            incorrect_count=len(self.current_answers) - correct_count,
            leaderboard=self.leaderboard(),
        )

    def get_final_scores(self) -> List[LeaderboardEntry]:
        return self.leaderboard()

    def remove_participant(self, connection_id: str) -> Optional[Participant]:
        self.current_answers.pop(connection_id, None)
        return self.participants.pop(connection_id, None)
