from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError, field_validator
from enum import Enum
from typing import Dict, List, Optional
import json
import time
import logging
import re

import config
from session_engine import Clock, Question, Session, SessionState, WireModel
from session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class ErrorCode(str, Enum):
    NOT_FOUND = "NotFound"
    INVALID_STATE = "InvalidState"
    FORBIDDEN = "Forbidden"
    DUPLICATE_SUBMISSION = "DuplicateSubmission"
    PRECONDITION = "Precondition"
    BAD_REQUEST = "BadRequest"
    UNAVAILABLE = "Unavailable"


def _sanitize_text(text: str) -> str:
    """Strip HTML tags and control characters from client-supplied text."""
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


# --- Inbound messages ---

class CreateGameRequest(WireModel):
    title: str
    questions: List[Question]

    @field_validator('title')
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = _sanitize_text(v)
        if not v or len(v) > config.MAX_TITLE_LENGTH:
            raise ValueError(f'Title must be 1-{config.MAX_TITLE_LENGTH} characters')
        return v

    @field_validator('questions')
    @classmethod
    def validate_questions(cls, v: List[Question]) -> List[Question]:
        for q in v:
            if len(q.options) != config.OPTIONS_PER_QUESTION:
                raise ValueError(f'Question must have {config.OPTIONS_PER_QUESTION} options')
            if not (0 <= q.correct_option_index < len(q.options)):
                raise ValueError('Invalid correctOptionIndex')
        return v


class JoinGameRequest(WireModel):
    room_code: str
    nickname: str

    @field_validator('nickname')
    @classmethod
    def validate_nickname(cls, v: str) -> str:
        v = _sanitize_text(v)
        if not v or len(v) > config.MAX_NICKNAME_LENGTH:
            raise ValueError(f'Nickname must be 1-{config.MAX_NICKNAME_LENGTH} characters')
        return v


class GameRequest(WireModel):
    game_id: str


class SubmitAnswerRequest(GameRequest):
    option_index: int


class SocketManager:
    """Bridges WebSocket connections to a SessionRegistry.

    Each connection is addressed by its client id, which doubles as the
    participant's connection id inside the registry. The registry decides
    what is legal; this class only picks the audience and the wording.
    """

    def __init__(self, registry: SessionRegistry, clock: Clock = time.time):
        self.registry = registry
        self.connections: Dict[str, WebSocket] = {}
        # WS rate limiting: client_id -> list of timestamps
        self.msg_timestamps: Dict[str, list] = {}
        self.allowed_origins: List[str] = []
        self._clock = clock

    def _allow_message(self, client_id: str) -> bool:
        """Sliding one-second window of WS_RATE_LIMIT_PER_SEC messages per client."""
        now = self._clock()
        timestamps = self.msg_timestamps.setdefault(client_id, [])
        timestamps[:] = [t for t in timestamps if now - t < 1.0]
        if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return False
        timestamps.append(now)
        return True

    async def connect(self, websocket: WebSocket, client_id: str):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        await websocket.accept()
        if client_id in self.connections:
            await websocket.send_json({
                "type": "error",
                "code": ErrorCode.BAD_REQUEST.value,
                "message": "Client id already connected",
            })
            await websocket.close(code=1008)
            return

        self.connections[client_id] = websocket
        logger.info("Client connected: %s", client_id)

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data.encode("utf-8")) > config.MAX_WS_MESSAGE_SIZE:
                    await self.send_error(client_id, ErrorCode.BAD_REQUEST, "Message too large")
                    continue

                if not self._allow_message(client_id):
                    await self.send_error(client_id, ErrorCode.BAD_REQUEST, "Too many messages")
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", client_id, data[:100])
                    await self.send_error(client_id, ErrorCode.BAD_REQUEST, "Invalid message format")
                    continue
                if not isinstance(message, dict):
                    await self.send_error(client_id, ErrorCode.BAD_REQUEST, "Invalid message format")
                    continue

                await self.handle_message(client_id, message)
        except WebSocketDisconnect:
            logger.info("Client disconnected: %s", client_id)
        except Exception:
            logger.exception("WebSocket error for client %s", client_id)
        finally:
            await self.disconnect(client_id)

    async def disconnect(self, client_id: str):
        self.connections.pop(client_id, None)
        self.msg_timestamps.pop(client_id, None)

        # A host may own several sessions from the same connection
        session = self.registry.find_session_by_participant(client_id)
        while session is not None:
            was_host = session.is_host(client_id)
            self.registry.remove_participant(session.code, client_id)

            if session.code in self.registry:
                if session.state == SessionState.LOBBY:
                    await self.broadcast(session, self._players_message(session))
            elif was_host and session.participants:
                await self.broadcast(session, {"type": "game:closed", "gameId": session.code})

            session = self.registry.find_session_by_participant(client_id)

    # --- outbound ---

    async def send(self, client_id: str, message: dict):
        ws = self.connections.get(client_id)
        if not ws:
            return
        try:
            await ws.send_json(message)
        except Exception:
            logger.warning("Dropping unreachable client %s", client_id)
            self.connections.pop(client_id, None)

    async def send_error(self, client_id: str, code: ErrorCode, message: str):
        await self.send(client_id, {"type": "error", "code": code.value, "message": message})

    async def broadcast(self, session: Session, message: dict):
        for client_id in list(session.participants):
            await self.send(client_id, message)

    def _players_message(self, session: Session) -> dict:
        return {
            "type": "player:joined",
            "players": [p.to_wire() for p in session.get_participants()],
        }

    # --- inbound ---

    async def handle_message(self, client_id: str, message: dict):
        msg_type = message.get("type")

        try:
            if msg_type == "create:game":
                await self.handle_create(client_id, CreateGameRequest.model_validate(message))
            elif msg_type == "join:game":
                await self.handle_join(client_id, JoinGameRequest.model_validate(message))
            elif msg_type == "start:game":
                await self.handle_start(client_id, GameRequest.model_validate(message))
            elif msg_type == "next:question":
                await self.handle_next_question(client_id, GameRequest.model_validate(message))
            elif msg_type == "submit:answer":
                await self.handle_submit_answer(client_id, SubmitAnswerRequest.model_validate(message))
            elif msg_type == "show:results":
                await self.handle_show_results(client_id, GameRequest.model_validate(message))
            else:
                await self.send_error(client_id, ErrorCode.BAD_REQUEST, "Unknown message type")
        except ValidationError as exc:
            logger.warning("Invalid %s from client %s: %d error(s)", msg_type, client_id, exc.error_count())
            await self.send_error(client_id, ErrorCode.BAD_REQUEST, "Invalid message payload")

    def _host_session(self, client_id: str, code: str) -> tuple[Optional[Session], Optional[ErrorCode]]:
        session = self.registry.get_session(code)
        if not session:
            return None, ErrorCode.NOT_FOUND
        if not session.is_host(client_id):
            return session, ErrorCode.FORBIDDEN
        return session, None

    async def handle_create(self, client_id: str, request: CreateGameRequest):
        if len(self.registry) >= config.MAX_SESSIONS:
            await self.send_error(client_id, ErrorCode.UNAVAILABLE, "Too many active games. Please try again later.")
            return
        try:
            session = self.registry.create_session(client_id, request.title, request.questions)
        except RuntimeError:
            logger.exception("Could not allocate a room code for client %s", client_id)
            await self.send_error(client_id, ErrorCode.UNAVAILABLE, "Failed to create game")
            return

        await self.send(client_id, {
            "type": "game:created",
            "gameId": session.code,
            "roomCode": session.code,
        })

    async def handle_join(self, client_id: str, request: JoinGameRequest):
        participant = self.registry.join_session(request.room_code, client_id, request.nickname)
        if participant is None:
            session = self.registry.get_session(request.room_code)
            if session is None:
                await self.send_error(client_id, ErrorCode.NOT_FOUND, "Game not found or already started")
            elif client_id in session.participants:
                await self.send_error(client_id, ErrorCode.INVALID_STATE, "Already in this game")
            else:
                await self.send_error(client_id, ErrorCode.INVALID_STATE, "Game not found or already started")
            return

        session = self.registry.get_session(request.room_code)
        await self.broadcast(session, self._players_message(session))

    async def handle_start(self, client_id: str, request: GameRequest):
        session, error = self._host_session(client_id, request.game_id)
        if error == ErrorCode.NOT_FOUND:
            await self.send_error(client_id, error, "Game not found")
            return
        if error == ErrorCode.FORBIDDEN:
            await self.send_error(client_id, error, "Only host can start the game")
            return

        question = self.registry.start_session(session.code)
        if question is None:
            code = ErrorCode.PRECONDITION if not session.questions else ErrorCode.INVALID_STATE
            await self.send_error(client_id, code, "Cannot start game")
            return

        await self.broadcast(session, {
            "type": "game:started",
            "currentQuestion": question.to_wire(),
            "questionNumber": 1,
            "totalQuestions": session.total_questions,
        })

    async def handle_next_question(self, client_id: str, request: GameRequest):
        session, error = self._host_session(client_id, request.game_id)
        if error == ErrorCode.NOT_FOUND:
            await self.send_error(client_id, error, "Game not found")
            return
        if error == ErrorCode.FORBIDDEN:
            await self.send_error(client_id, error, "Only host can advance questions")
            return

        was_showing_results = session.state == SessionState.RESULTS
        question = self.registry.next_question(session.code)
        if question is None:
            if not was_showing_results:
                await self.send_error(client_id, ErrorCode.INVALID_STATE, "Cannot advance question")
                return
            await self.broadcast(session, {
                "type": "game:finished",
                "finalScores": [e.to_wire() for e in session.get_final_scores()],
            })
            return

        await self.broadcast(session, {
            "type": "question:started",
            "question": question.to_wire(),
            "questionNumber": session.question_number,
            "totalQuestions": session.total_questions,
        })

    async def handle_submit_answer(self, client_id: str, request: SubmitAnswerRequest):
        session = self.registry.get_session(request.game_id)
        if not session:
            await self.send_error(client_id, ErrorCode.NOT_FOUND, "Game not found")
            return

        if not self.registry.submit_answer(session.code, client_id, request.option_index):
            if client_id not in session.participants:
                await self.send_error(client_id, ErrorCode.FORBIDDEN, "Not a participant in this game")
            elif session.state != SessionState.QUESTION:
                await self.send_error(client_id, ErrorCode.INVALID_STATE, "Answers are closed")
            elif session.has_answered(client_id):
                await self.send_error(client_id, ErrorCode.DUPLICATE_SUBMISSION, "Already answered")
            else:
                await self.send_error(client_id, ErrorCode.INVALID_STATE, "Answers are closed")
            return

        await self.send(session.host_id, {
            "type": "answer:submitted",
            "playerId": client_id,
            "answeredCount": session.answered_count,
        })

    async def handle_show_results(self, client_id: str, request: GameRequest):
        session, error = self._host_session(client_id, request.game_id)
        if error == ErrorCode.NOT_FOUND:
            await self.send_error(client_id, error, "Game not found")
            return
        if error == ErrorCode.FORBIDDEN:
            await self.send_error(client_id, error, "Only host can show results")
            return

        results = self.registry.show_results(session.code)
        if results is None:
            await self.send_error(client_id, ErrorCode.INVALID_STATE, "Cannot show results")
            return

        await self.broadcast(session, {"type": "results:question", **results.to_wire()})
