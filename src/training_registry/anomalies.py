from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.engine import Connection

from .db import fetch_all, fetch_one
from .errors import NotFound

STATUSES = ("open", "in_progress", "resolved")


def _check_status(status: Any) -> str:
    if status not in STATUSES:
        raise ValueError(f"Invalid status. Use one of: {', '.join(STATUSES)}")
    return status


def _comments(conn: Connection, anomaly_ids: List[int]) -> Dict[int, List[Dict[str, Any]]]:
    out: Dict[int, List[Dict[str, Any]]] = {i: [] for i in anomaly_ids}
    if not anomaly_ids:
        return out
    for row in fetch_all(conn, "SELECT * FROM anomaly_comments ORDER BY created_at, id"):
        if row["anomaly_id"] in out:
            out[row["anomaly_id"]].append(row)
    return out


def list_anomalies(conn: Connection) -> List[Dict[str, Any]]:
    """All anomalies with comments: open, then in progress, then resolved; newest first."""
    rows = fetch_all(
        conn,
        """
        SELECT * FROM anomalies
        ORDER BY CASE status WHEN 'open' THEN 0 WHEN 'in_progress' THEN 1 ELSE 2 END,
                 created_at DESC, id DESC
        """,
    )
    comments = _comments(conn, [r["id"] for r in rows])
    for r in rows:
        r["comments"] = comments[r["id"]]
    return rows


def get_anomaly(conn: Connection, anomaly_id: int) -> Dict[str, Any]:
    row = fetch_one(conn, "SELECT * FROM anomalies WHERE id = :i", {"i": int(anomaly_id)})
    if row is None:
        raise NotFound(f"Anomaly {anomaly_id} not found")
    row["comments"] = fetch_all(
        conn,
        "SELECT * FROM anomaly_comments WHERE anomaly_id = :i ORDER BY created_at, id",
        {"i": int(anomaly_id)},
    )
    return row


def create_anomaly(conn: Connection, title: Any, description: Any = None, status: Any = "open") -> Dict[str, Any]:
    t = str(title).strip() if title is not None else ""
    if not t:
        raise ValueError("title is required")
    res = conn.execute(
        text("INSERT INTO anomalies (title, description, status) VALUES (:t, :d, :s)"),
        {"t": t, "d": description or None, "s": _check_status(status or "open")},
    )
    return get_anomaly(conn, int(res.lastrowid))


def update_anomaly(
    conn: Connection, anomaly_id: int, *, title: Any = None, description: Any = None, status: Any = None
) -> Dict[str, Any]:
    """Update the given fields; omitted ones keep their value."""
    if status is not None:
        _check_status(status)
    if title is not None and not str(title).strip():
        raise ValueError("title must not be empty")
    res = conn.execute(
        text(
            """
            UPDATE anomalies SET
                title = COALESCE(:t, title),
                description = COALESCE(:d, description),
                status = COALESCE(:s, status),
                updated_at = CURRENT_TIMESTAMP
            WHERE id = :i
            """
        ),
        {"t": str(title).strip() if title is not None else None, "d": description, "s": status, "i": int(anomaly_id)},
    )
    if res.rowcount == 0:
        raise NotFound(f"Anomaly {anomaly_id} not found")
    return get_anomaly(conn, anomaly_id)


def delete_anomaly(conn: Connection, anomaly_id: int) -> None:
    res = conn.execute(text("DELETE FROM anomalies WHERE id = :i"), {"i": int(anomaly_id)})
    if res.rowcount == 0:
        raise NotFound(f"Anomaly {anomaly_id} not found")


def add_comment(conn: Connection, anomaly_id: int, comment: Any) -> Dict[str, Any]:
    body = str(comment).strip() if comment is not None else ""
    if not body:
        raise ValueError("comment is required")
    get_anomaly(conn, anomaly_id)
    res = conn.execute(
        text("INSERT INTO anomaly_comments (anomaly_id, comment) VALUES (:a, :c)"),
        {"a": int(anomaly_id), "c": body},
    )
    conn.execute(
        text("UPDATE anomalies SET updated_at = CURRENT_TIMESTAMP WHERE id = :a"), {"a": int(anomaly_id)}
    )
    return fetch_one(conn, "SELECT * FROM anomaly_comments WHERE id = :i", {"i": int(res.lastrowid)}) or {}


def update_comment(conn: Connection, anomaly_id: int, comment_id: int, comment: Any) -> Dict[str, Any]:
    body = str(comment).strip() if comment is not None else ""
    if not body:
        raise ValueError("comment is required")
    res = conn.execute(
        text("UPDATE anomaly_comments SET comment = :c WHERE id = :i AND anomaly_id = :a"),
        {"c": body, "i": int(comment_id), "a": int(anomaly_id)},
    )
    if res.rowcount == 0:
        raise NotFound(f"Comment {comment_id} not found")
    return fetch_one(conn, "SELECT * FROM anomaly_comments WHERE id = :i", {"i": int(comment_id)}) or {}


def delete_comment(conn: Connection, anomaly_id: int, comment_id: int) -> None:
    res = conn.execute(
        text("DELETE FROM anomaly_comments WHERE id = :i AND anomaly_id = :a"),
        {"i": int(comment_id), "a": int(anomaly_id)},
    )
    if res.rowcount == 0:
        raise NotFound(f"Comment {comment_id} not found")


__all__ = [
    "STATUSES",
    "list_anomalies",
    "get_anomaly",
    "create_anomaly",
    "update_anomaly",
    "delete_anomaly",
    "add_comment",
    "update_comment",
    "delete_comment",
]
