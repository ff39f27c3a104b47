"""
Session factory used when a game invite is accepted.

The invite machine only needs ``create(session_type, participant_ids)`` and
``abandon(session_id)``; anything with those two coroutines can be plugged in.
The default factory stores a ``games`` row holding the opening state of the
requested game. Playing the game is handled elsewhere.
"""
import uuid
import random
import logging
from datetime import datetime, timezone
from typing import List, Protocol

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from .models import AsyncSessionLocal
from .models.games import Game
from .errors import InvalidState, DependencyFailure

logger = logging.getLogger(__name__)

SESSION_TYPES = ('tictactoe', 'rps', 'wordle', 'hangman')

WORDLE_MAX_GUESSES = 6
HANGMAN_MAX_MISSES = 6

WORD_LIST = [
    'FLUSH', 'WIPES', 'PAPER', 'CLEAN', 'SPRAY',
    'BRUSH', 'TOWEL', 'WATER', 'DRAIN', 'STALL',
    'BIDET', 'SEWER', 'PLUMB', 'WASTE', 'SMELL',
    'STINK', 'FRESH', 'RINSE', 'SCRUB', 'SHINE',
    'SCENT', 'STEAM', 'WIPER', 'POTTY', 'PIPES',
    'VALVE', 'BASIN', 'SWIRL', 'FLOAT', 'GROUT',
]


class SessionFactory(Protocol):
    async def create(self, session_type: str, participant_ids: List[int]) -> str: ...

    async def abandon(self, session_id: str) -> None: ...


def initial_state(session_type: str, players: List[int]) -> dict:
    if session_type == 'tictactoe':
        return {'board': [None] * 9}
    if session_type == 'rps':
        return {'choices': {str(p): None for p in players}}
    if session_type == 'wordle':
        return {'word': random.choice(WORD_LIST), 'guesses': [], 'max_guesses': WORDLE_MAX_GUESSES}
    if session_type == 'hangman':
        word = random.choice(WORD_LIST)
        return {
            'word': word,
            'guessed_letters': [],
            'remaining_guesses': HANGMAN_MAX_MISSES,
            'display_word': '_' * len(word),
        }
    raise InvalidState(f'Unknown game type: {session_type}')


class GameSessionFactory:

    async def create(self, session_type: str, participant_ids: List[int]) -> str:
        players = list(participant_ids)
        if len(players) != 2 or players[0] == players[1]:
            raise InvalidState('A game needs exactly two different players')
        game = Game(
            id=uuid.uuid4().hex,
            type=session_type,
            players=players,
            status='active',
            current_turn=players[0],
            state=initial_state(session_type, players),
        )
        try:
            async with AsyncSessionLocal() as session:
                session.add(game)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f'Creating {session_type} game failed: {e}')
            raise DependencyFailure('Could not create the game') from e
        logger.info(f'Game {game.id} ({session_type}) created for players {players}')
        return game.id

    async def abandon(self, session_id: str) -> None:
        try:
            async with AsyncSessionLocal() as session:
                await session.execute(
                    update(Game)
                    .where(Game.id == session_id)
                    .values(status='abandoned', last_updated=datetime.now(timezone.utc))
                )
                await session.commit()
        except SQLAlchemyError as e:
            raise DependencyFailure() from e
        logger.info(f'Game {session_id} abandoned')

    async def get(self, session_id: str):
        async with AsyncSessionLocal() as session:
            return await session.get(Game, session_id)


games = GameSessionFactory()
