from typing import Dict, List, Optional
import random
import time
import logging

import config
from session_engine import (
    Clock,
    LeaderboardEntry,
    Participant,
    Question,
    RoundResults,
    Session,
)

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every live Session, keyed by room code.

    All mutation of the code -> Session map goes through these methods.
    The by-code wrappers return the same ``None``/``False`` sentinel for an
    unknown code as the Session does for an illegal transition.
    """

    def __init__(self, clock: Clock = time.time, rng: Optional[random.Random] = None):
        self.sessions: Dict[str, Session] = {}
        self._clock = clock
        self._rng = rng or random.Random()

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, code: str) -> bool:
        return code in self.sessions

    def generate_room_code(self) -> str:
        """Generate a unique 6-digit room code, checking for collisions."""
        for _ in range(config.MAX_ROOM_CODE_ATTEMPTS):
            code = str(self._rng.randint(config.ROOM_CODE_MIN, config.ROOM_CODE_MAX))
            if code not in self.sessions:
                return code
        raise RuntimeError("Failed to generate unique room code")

    def create_session(self, creator_id: str, title: str, questions: List[Question]) -> Session:
        code = self.generate_room_code()
        session = Session(code, creator_id, title, questions, clock=self._clock)
        self.sessions[code] = session
        logger.info("Session %s created by %s ('%s', %d questions)",
                    code, creator_id, title, len(session.questions))
        return session

    def get_session(self, code: str) -> Optional[Session]:
        return self.sessions.get(code)

    def find_session_by_participant(self, connection_id: str) -> Optional[Session]:
        for session in self.sessions.values():
            if connection_id in session.participants:
                return session
        return None

    def remove_participant(self, code: str, connection_id: str):
        session = self.sessions.get(code)
        if not session:
            return
        session.remove_participant(connection_id)
        if session.is_host(connection_id) or not session.participants:
            del self.sessions[code]
            logger.info("Session %s deleted (%s)", code,
                        "host left" if session.is_host(connection_id) else "empty")

    # --- by-code operations ---

    def join_session(self, code: str, connection_id: str, display_name: str) -> Optional[Participant]:
        session = self.sessions.get(code)
        if not session:
            return None
        return session.join(connection_id, display_name)

    def start_session(self, code: str) -> Optional[Question]:
        session = self.sessions.get(code)
        if not session:
            return None
        return session.start()

    def next_question(self, code: str) -> Optional[Question]:
        session = self.sessions.get(code)
        if not session:
            return None
        return session.next_question()

    def submit_answer(self, code: str, connection_id: str, option_index: int) -> bool:
        session = self.sessions.get(code)
        if not session:
            return False
        return session.submit_answer(connection_id, option_index)

    def show_results(self, code: str) -> Optional[RoundResults]:
        session = self.sessions.get(code)
        if not session:
            return None
        return session.show_results()

    def get_final_scores(self, code: str) -> List[LeaderboardEntry]:
        session = self.sessions.get(code)
        if not session:
            return []
        return session.get_final_scores()

    def get_participants(self, code: str) -> List[Participant]:
        session = self.sessions.get(code)
        if not session:
            return []
        return session.get_participants()
