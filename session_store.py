"""
Almacén de sesiones de pago.

SessionStore define las primitivas (insert/fetch/delete/lock) y sobre ellas
la semántica común: get() con expiración perezosa y sweep_expired(). La
implementación en memoria vive lo que vive el proceso; otra respaldada en
una caché distribuida solo tiene que implementar las primitivas.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

from payment_errors import SessionExpiredError, SessionNotFoundError
from payment_models import PaymentSession

logger = logging.getLogger(__name__)


class SessionStore(ABC):

    @abstractmethod
    async def insert(self, session: PaymentSession) -> None:
        ...

    @abstractmethod
    async def fetch(self, session_id: str) -> Optional[PaymentSession]:
        """Devuelve la sesión tal cual, sin comprobar expiración"""

    @abstractmethod
    async def delete(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def session_ids(self) -> List[str]:
        ...

    @abstractmethod
    def lock(self, session_id: str):
        """Context manager asíncrono: sección crítica de una sesión"""

    async def get(self, session_id: str, now: datetime) -> PaymentSession:
        """
        Obtiene una sesión viva. Debe llamarse con el lock de la sesión tomado.

        Raises:
            SessionNotFoundError: Si no existe
            SessionExpiredError: Si superó su TTL (se elimina en el acto)
        """
        session = await self.fetch(session_id) if session_id else None
        if session is None:
            raise SessionNotFoundError(session_id)
        if session.is_expired(now):
            await self.delete(session_id)
            logger.info(f"Payment session {session_id} expired on access and was removed")
            raise SessionExpiredError(session_id)
        return session

    async def sweep_expired(self, now: datetime) -> int:
        """Elimina las sesiones expiradas; devuelve cuántas se eliminaron"""
        removed = 0
        for session_id in await self.session_ids():
            async with self.lock(session_id):
                session = await self.fetch(session_id)
                if session is not None and session.is_expired(now):
                    await self.delete(session_id)
                    removed += 1
                    logger.info(f"Expired payment session {session_id} removed")
        return removed


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class InMemorySessionStore(SessionStore):
    """Diccionario de sesiones con un asyncio.Lock por sesión.

    Los locks se cuentan por referencia y se descartan cuando nadie los usa.
    """

    def __init__(self):
        self._sessions: Dict[str, PaymentSession] = {}
        self._locks: Dict[str, _LockEntry] = {}

    async def insert(self, session: PaymentSession) -> None:
        self._sessions[session.session_id] = session

    async def fetch(self, session_id: str) -> Optional[PaymentSession]:
        return self._sessions.get(session_id)

    async def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    async def session_ids(self) -> List[str]:
        return list(self._sessions)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        entry = self._locks.get(session_id)
        if entry is None:
            entry = self._locks[session_id] = _LockEntry()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(session_id, None)
