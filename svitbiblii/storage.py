import json
import os
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from svitbiblii.router import NavigationState


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Subscriber:
    user_id: int
    username: Optional[str]
    first_name: Optional[str]


@dataclass
class MailingRecord:
    id: int
    book_name: str
    chapter_index: int
    chapter_number: Optional[int]
    verse_numbers: List[int]
    verse_texts: List[str]
    recipients_count: int
    success_count: int
    fail_count: int
    sent_at: str


@dataclass
class CachedCommentary:
    chapter_index: int
    start_offset: int
    response_text: str
    model: str


class Store:
    def __init__(self, path: str) -> None:
        if path != ":memory:":
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self._create_tables()

    def _create_tables(self) -> None:
        self.conn.executescript(
            '''
            CREATE TABLE IF NOT EXISTS users (
                user_id INTEGER PRIMARY KEY,
                username TEXT,
                first_name TEXT,
                last_name TEXT,
                language_code TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                total_interactions INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                last_activity TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS navigation (
                chat_id INTEGER PRIMARY KEY,
                chapter_index INTEGER,
                updated_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS mailing_iterations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_name TEXT NOT NULL,
                chapter_index INTEGER NOT NULL,
                chapter_number INTEGER,
                verse_numbers TEXT NOT NULL,
                verse_texts TEXT NOT NULL,
                recipients_count INTEGER NOT NULL DEFAULT 0,
                success_count INTEGER NOT NULL DEFAULT 0,
                fail_count INTEGER NOT NULL DEFAULT 0,
                sent_at TEXT NOT NULL
            );
            CREATE TABLE IF NOT EXISTS ai_responses (
                chapter_index INTEGER NOT NULL,
                start_offset INTEGER NOT NULL,
                prompt TEXT NOT NULL,
                response_text TEXT NOT NULL,
                model TEXT NOT NULL,
                processing_ms INTEGER,
                created_at TEXT NOT NULL,
                PRIMARY KEY (chapter_index, start_offset)
            );
            CREATE TABLE IF NOT EXISTS ai_usage (
                user_id INTEGER NOT NULL,
                day TEXT NOT NULL,
                count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, day)
            );
            '''
        )
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # Users

    def touch_user(
        self,
        user_id: int,
        username: Optional[str] = None,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        language_code: Optional[str] = None,
    ) -> None:
        now = _now()
        self.conn.execute(
            """
            INSERT INTO users(user_id, username, first_name, last_name, language_code,
                              is_active, total_interactions, created_at, last_activity)
            VALUES(?,?,?,?,?,1,1,?,?)
            ON CONFLICT(user_id) DO UPDATE SET
                username=COALESCE(excluded.username, users.username),
                first_name=COALESCE(excluded.first_name, users.first_name),
                last_name=COALESCE(excluded.last_name, users.last_name),
                language_code=COALESCE(excluded.language_code, users.language_code),
                is_active=1,
                total_interactions=users.total_interactions + 1,
                last_activity=excluded.last_activity
            """,
            (user_id, username, first_name, last_name, language_code, now, now),
        )
        self.conn.commit()

    def active_users(self) -> List[Subscriber]:
        cur = self.conn.execute(
            "SELECT user_id, username, first_name FROM users WHERE is_active=1 ORDER BY user_id"
        )
        return [Subscriber(*row) for row in cur.fetchall()]

    def deactivate_user(self, user_id: int) -> None:
        self.conn.execute("UPDATE users SET is_active=0 WHERE user_id=?", (user_id,))
        self.conn.commit()

    # Navigation state

    def load_state(self, chat_id: int) -> NavigationState:
        cur = self.conn.execute("SELECT chapter_index FROM navigation WHERE chat_id=?", (chat_id,))
        row = cur.fetchone()
        if not row or row[0] is None:
            return NavigationState()
        return NavigationState(current_chapter_index=int(row[0]))

    def save_state(self, chat_id: int, state: NavigationState) -> None:
        self.conn.execute(
            """
            INSERT INTO navigation(chat_id, chapter_index, updated_at)
            VALUES(?,?,?)
            ON CONFLICT(chat_id) DO UPDATE SET
                chapter_index=excluded.chapter_index,
                updated_at=excluded.updated_at
            """,
            (chat_id, state.current_chapter_index, _now()),
        )
        self.conn.commit()

    # Mailing log

    def record_mailing(
        self,
        book_name: str,
        chapter_index: int,
        chapter_number: Optional[int],
        verse_numbers: Sequence[int],
        verse_texts: Sequence[str],
        recipients_count: int,
        success_count: int,
        fail_count: int,
    ) -> int:
        cur = self.conn.execute(
            """
            INSERT INTO mailing_iterations(book_name, chapter_index, chapter_number, verse_numbers,
                                           verse_texts, recipients_count, success_count, fail_count, sent_at)
            VALUES(?,?,?,?,?,?,?,?,?)
            """,
            (
                book_name,
                chapter_index,
                chapter_number,
                json.dumps(list(verse_numbers)),
                json.dumps(list(verse_texts), ensure_ascii=False),
                recipients_count,
                success_count,
                fail_count,
                _now(),
            ),
        )
        self.conn.commit()
        return int(cur.lastrowid)

    def last_mailing(self) -> Optional[MailingRecord]:
        cur = self.conn.execute(
            """
            SELECT id, book_name, chapter_index, chapter_number, verse_numbers, verse_texts,
                   recipients_count, success_count, fail_count, sent_at
            FROM mailing_iterations ORDER BY id DESC LIMIT 1
            """
        )
        row = cur.fetchone()
        if not row:
            return None
        return MailingRecord(
            id=row[0],
            book_name=row[1],
            chapter_index=row[2],
            chapter_number=row[3],
            verse_numbers=json.loads(row[4]),
            verse_texts=json.loads(row[5]),
            recipients_count=row[6],
            success_count=row[7],
            fail_count=row[8],
            sent_at=row[9],
        )

    # AI commentary

    def cached_commentary(self, chapter_index: int, start_offset: int) -> Optional[CachedCommentary]:
        cur = self.conn.execute(
            "SELECT response_text, model FROM ai_responses WHERE chapter_index=? AND start_offset=?",
            (chapter_index, start_offset),
        )
        row = cur.fetchone()
        if not row:
            return None
        return CachedCommentary(chapter_index, start_offset, row[0], row[1])

    def save_commentary(
        self,
        chapter_index: int,
        start_offset: int,
        prompt: str,
        response_text: str,
        model: str,
        processing_ms: Optional[int] = None,
    ) -> None:
        self.conn.execute(
            """
            INSERT INTO ai_responses(chapter_index, start_offset, prompt, response_text, model,
                                     processing_ms, created_at)
            VALUES(?,?,?,?,?,?,?)
            ON CONFLICT(chapter_index, start_offset) DO UPDATE SET
                prompt=excluded.prompt,
                response_text=excluded.response_text,
                model=excluded.model,
                processing_ms=excluded.processing_ms,
                created_at=excluded.created_at
            """,
            (chapter_index, start_offset, prompt, response_text, model, processing_ms, _now()),
        )
        self.conn.commit()

    def ai_requests_today(self, user_id: int, day: str) -> int:
        cur = self.conn.execute("SELECT count FROM ai_usage WHERE user_id=? AND day=?", (user_id, day))
        row = cur.fetchone()
        return int(row[0]) if row else 0

    def record_ai_request(self, user_id: int, day: str) -> None:
        self.conn.execute(
            """
            INSERT INTO ai_usage(user_id, day, count) VALUES(?,?,1)
            ON CONFLICT(user_id, day) DO UPDATE SET count=ai_usage.count + 1
            """,
            (user_id, day),
        )
        self.conn.execute("DELETE FROM ai_usage WHERE day<>?", (day,))
        self.conn.commit()
