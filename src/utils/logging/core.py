"""
Session Logger Core Implementation

Dual-layer logging (JSON + SQLite) for audit sessions, plus the one-time
stdlib logging setup used by the entry point.

The logger captures:
- reasoning engine calls (turn, tokens, cost, stop reason)
- capability calls (name, arguments, success, duration)
- session outcomes (success/error, turns used, failure reason)
- result deliveries (reference, status, payload size)
- errors
"""

import json
import logging
import sqlite3
import sys
import threading
from pathlib import Path
from datetime import datetime, UTC
from typing import Dict, Any, Optional, List

from config import config
from utils.logging.types import LogCategory
from utils.correlation import SessionIdFilter, get_session_id

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(session_id)s] %(name)s: %(message)s"


def setup_logging(level: Optional[str] = None, stream=None) -> logging.Logger:
    """
    Configure the root logger once: stream handler, session-id filter.

    Calling again only updates the level.
    """
    root = logging.getLogger()
    level_name = (level or config.LOG_LEVEL or "INFO").upper()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    if not any(getattr(h, "_hcs_audit", False) for h in root.handlers):
        handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(SessionIdFilter())
        handler._hcs_audit = True
        root.addHandler(handler)

    # sdk / http clients are chatty at info
    for noisy in ("httpx", "openai", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    return root


class SessionLogger:
    """
    Dual-layer logging system

    Usage:
        session_log = SessionLogger()
        session_log.log_engine_call("0.0.999", turn=1, model="...", cost=0.01,
                                    stop_reason="tool_calls", tool_calls=2)
        session_log.log_session_outcome("0.0.999", status="success", turns=4)
    """

    def __init__(self, raw_dir: Optional[Path] = None, db_path: Optional[Path] = None,
                 to_sqlite: Optional[bool] = None, to_json: Optional[bool] = None):
        self.raw_dir = Path(raw_dir or config.LOGS_RAW_DIR)
        self.db_path = Path(db_path or config.LOGS_DB_PATH)
        self.to_sqlite = config.LOG_TO_SQLITE if to_sqlite is None else to_sqlite
        self.to_json = config.ENABLE_EVENT_LOG if to_json is None else to_json
        self._write_lock = threading.Lock()
        self._counter = 0

        if self.to_json:
            for category in LogCategory:
                (self.raw_dir / category.value).mkdir(parents=True, exist_ok=True)

        if self.to_sqlite:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_database()

    def _init_database(self):
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS engine_calls (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    session_id TEXT,
                    contract_id TEXT,
                    turn INTEGER,
                    model TEXT,
                    stop_reason TEXT,
                    tool_calls INTEGER,
                    prompt_tokens INTEGER,
                    output_tokens INTEGER,
                    thinking_tokens INTEGER,
                    cost REAL,
                    duration_seconds REAL,
                    metadata TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS tool_calls (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    session_id TEXT,
                    contract_id TEXT,
                    turn INTEGER,
                    tool_name TEXT NOT NULL,
                    success INTEGER NOT NULL,
                    error TEXT,
                    duration_seconds REAL,
                    metadata TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    session_id TEXT,
                    contract_id TEXT,
                    status TEXT NOT NULL,
                    turns INTEGER,
                    score REAL,
                    num_findings INTEGER,
                    total_cost REAL,
                    failure_reason TEXT,
                    metadata TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS deliveries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    session_id TEXT,
                    contract_id TEXT,
                    channel_id TEXT,
                    status TEXT NOT NULL,
                    reference TEXT,
                    payload_bytes INTEGER,
                    delivered INTEGER NOT NULL,
                    error TEXT
                )
            """)

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS errors (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    session_id TEXT,
                    contract_id TEXT,
                    error_type TEXT NOT NULL,
                    error_message TEXT NOT NULL,
                    context TEXT
                )
            """)

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_engine_calls_contract ON engine_calls(contract_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_tool_calls_session ON tool_calls(session_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_sessions_contract ON sessions(contract_id)")

            conn.commit()

    def _now(self) -> str:
        return datetime.now(UTC).isoformat()

    def _insert(self, sql: str, params: tuple):
        if not self.to_sqlite:
            return
        with self._write_lock:
            with sqlite3.connect(str(self.db_path)) as conn:
                conn.execute(sql, params)
                conn.commit()

    def _save_json(self, category: LogCategory, stem: str, data: Dict[str, Any]):
        """one file per event; session id injected when present"""
        if not self.to_json:
            return
        session_id = get_session_id()
        if session_id and "session_id" not in data:
            data["session_id"] = session_id

        with self._write_lock:
            self._counter += 1
            counter = self._counter
        safe_stem = stem.replace("/", "_").replace(".", "-")
        filename = f"{datetime.now(UTC).strftime('%Y-%m-%d_%H%M%S')}_{safe_stem}_{counter:05d}.json"
        filepath = self.raw_dir / category.value / filename
        with open(filepath, 'w', encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)

    def log_engine_call(
        self,
        contract_id: Optional[str],
        turn: int,
        model: str,
        stop_reason: Optional[str],
        tool_calls: int = 0,
        prompt_tokens: int = 0,
        output_tokens: int = 0,
        thinking_tokens: int = 0,
        cost: float = 0.0,
        duration_seconds: float = 0.0,
        response_text: str = "",
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Log one reasoning engine turn

        Saves to:
        - JSON: data/logs/raw/engine_calls/...
        - SQLite: engine_calls table
        """
        timestamp = self._now()
        self._save_json(LogCategory.ENGINE, f"{contract_id}_t{turn}", {
            "timestamp": timestamp,
            "contract_id": contract_id,
            "turn": turn,
            "model": model,
            "stop_reason": stop_reason,
            "tool_calls": tool_calls,
            "response": response_text,
            "tokens": {"prompt": prompt_tokens, "output": output_tokens, "thinking": thinking_tokens},
            "cost": cost,
            "duration_seconds": duration_seconds,
            "metadata": metadata or {},
        })
        self._insert("""
            INSERT INTO engine_calls
            (timestamp, session_id, contract_id, turn, model, stop_reason, tool_calls,
             prompt_tokens, output_tokens, thinking_tokens, cost, duration_seconds, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            timestamp, get_session_id(), contract_id, turn, model, stop_reason, tool_calls,
            prompt_tokens, output_tokens, thinking_tokens, cost, duration_seconds,
            json.dumps(metadata or {}, default=str)
        ))

    def log_tool_call(
        self,
        contract_id: Optional[str],
        turn: int,
        tool_name: str,
        arguments: Dict[str, Any],
        success: bool,
        error: Optional[str] = None,
        duration_seconds: float = 0.0,
        output_preview: Optional[str] = None
    ):
        timestamp = self._now()
        self._save_json(LogCategory.TOOL, f"{contract_id}_{tool_name}_t{turn}", {
            "timestamp": timestamp,
            "contract_id": contract_id,
            "turn": turn,
            "tool_name": tool_name,
            "arguments": arguments,
            "success": success,
            "error": error,
            "output_preview": output_preview,
            "duration_seconds": duration_seconds,
        })
        self._insert("""
            INSERT INTO tool_calls
            (timestamp, session_id, contract_id, turn, tool_name, success, error, duration_seconds, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            timestamp, get_session_id(), contract_id, turn, tool_name, int(bool(success)), error,
            duration_seconds, json.dumps({"argument_keys": sorted(arguments or {})})
        ))

    def log_session_outcome(
        self,
        contract_id: Optional[str],
        status: str,
        turns: int,
        score: Optional[float] = None,
        num_findings: int = 0,
        total_cost: float = 0.0,
        failure_reason: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ):
        timestamp = self._now()
        self._save_json(LogCategory.SESSION, f"{contract_id}_{status}", {
            "timestamp": timestamp,
            "contract_id": contract_id,
            "status": status,
            "turns": turns,
            "score": score,
            "num_findings": num_findings,
            "total_cost": total_cost,
            "failure_reason": failure_reason,
            "metadata": metadata or {},
        })
        self._insert("""
            INSERT INTO sessions
            (timestamp, session_id, contract_id, status, turns, score, num_findings, total_cost, failure_reason, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            timestamp, get_session_id(), contract_id, status, turns, score, num_findings,
            total_cost, failure_reason, json.dumps(metadata or {}, default=str)
        ))

    def log_delivery(
        self,
        contract_id: Optional[str],
        channel_id: Optional[str],
        status: str,
        delivered: bool,
        reference: Optional[str] = None,
        payload_bytes: int = 0,
        error: Optional[str] = None
    ):
        timestamp = self._now()
        self._save_json(LogCategory.DELIVERY, f"{contract_id}_{status}", {
            "timestamp": timestamp,
            "contract_id": contract_id,
            "channel_id": channel_id,
            "status": status,
            "delivered": delivered,
            "reference": reference,
            "payload_bytes": payload_bytes,
            "error": error,
        })
        self._insert("""
            INSERT INTO deliveries
            (timestamp, session_id, contract_id, channel_id, status, reference, payload_bytes, delivered, error)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            timestamp, get_session_id(), contract_id, channel_id, status, reference,
            payload_bytes, int(bool(delivered)), error
        ))

    def log_error(
        self,
        contract_id: Optional[str],
        error_type: str,
        error_message: str,
        context: Optional[Dict[str, Any]] = None
    ):
        """Consistent sink for failures outside the tool loop."""
        timestamp = self._now()
        label = contract_id or "unknown_contract"
        self._save_json(LogCategory.ERROR, f"{label}_{error_type}", {
            "timestamp": timestamp,
            "contract_id": label,
            "error_type": error_type,
            "error_message": error_message,
            "context": context or {},
        })
        self._insert("""
            INSERT INTO errors
            (timestamp, session_id, contract_id, error_type, error_message, context)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            timestamp, get_session_id(), label, error_type, error_message,
            json.dumps(context or {}, default=str)
        ))

    def query_costs(self, contract_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """engine cost per contract, or per session for one contract"""
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()

            if contract_id:
                cursor.execute("""
                    SELECT session_id, SUM(cost) as total_cost, COUNT(*) as num_calls
                    FROM engine_calls
                    WHERE contract_id = ?
                    GROUP BY session_id
                """, (contract_id,))
            else:
                cursor.execute("""
                    SELECT contract_id, SUM(cost) as total_cost, COUNT(*) as num_calls
                    FROM engine_calls
                    GROUP BY contract_id
                """)

            results = [
                {"name": row[0], "total_cost": row[1], "num_calls": row[2]}
                for row in cursor.fetchall()
            ]

        return results

    def query_sessions(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        with sqlite3.connect(str(self.db_path)) as conn:
            cursor = conn.cursor()
            sql = """
                SELECT contract_id, status, turns, score, failure_reason, timestamp
                FROM sessions
            """
            params: tuple = ()
            if status:
                sql += " WHERE status = ?"
                params = (status,)
            cursor.execute(sql + " ORDER BY id DESC", params)

            results = [
                {
                    "contract_id": row[0],
                    "status": row[1],
                    "turns": row[2],
                    "score": row[3],
                    "failure_reason": row[4],
                    "timestamp": row[5],
                }
                for row in cursor.fetchall()
            ]

        return results
