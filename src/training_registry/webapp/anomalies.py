from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify

from .. import anomalies
from .common import engine, parse_id, payload

anomalies_bp = Blueprint("anomalies", __name__)


@anomalies_bp.route("/anomalies", methods=["GET"])
def anomalies_index() -> Any:
    with engine().connect() as conn:
        return jsonify(anomalies.list_anomalies(conn))


@anomalies_bp.route("/anomalies", methods=["POST"])
def anomalies_create() -> Any:
    data = payload()
    with engine().begin() as conn:
        row = anomalies.create_anomaly(conn, data.get("title"), data.get("description"), data.get("status") or "open")
    return jsonify(row), 201


@anomalies_bp.route("/anomalies/<anomaly_id>", methods=["GET"])
def anomaly_detail(anomaly_id: str) -> Any:
    aid = parse_id(anomaly_id, "anomaly id")
    with engine().connect() as conn:
        return jsonify(anomalies.get_anomaly(conn, aid))


@anomalies_bp.route("/anomalies/<anomaly_id>", methods=["PUT"])
def anomaly_update(anomaly_id: str) -> Any:
    aid = parse_id(anomaly_id, "anomaly id")
    data = payload()
    with engine().begin() as conn:
        row = anomalies.update_anomaly(
            conn, aid, title=data.get("title"), description=data.get("description"), status=data.get("status")
        )
    return jsonify(row)


@anomalies_bp.route("/anomalies/<anomaly_id>", methods=["DELETE"])
def anomaly_delete(anomaly_id: str) -> Any:
    aid = parse_id(anomaly_id, "anomaly id")
    with engine().begin() as conn:
        anomalies.delete_anomaly(conn, aid)
    return jsonify({"status": "ok"})


@anomalies_bp.route("/anomalies/<anomaly_id>/comments", methods=["POST"])
def comment_add(anomaly_id: str) -> Any:
    aid = parse_id(anomaly_id, "anomaly id")
    data = payload()
    with engine().begin() as conn:
        row = anomalies.add_comment(conn, aid, data.get("comment"))
    return jsonify(row), 201


@anomalies_bp.route("/anomalies/<anomaly_id>/comments/<comment_id>", methods=["PUT"])
def comment_update(anomaly_id: str, comment_id: str) -> Any:
    aid = parse_id(anomaly_id, "anomaly id")
    cid = parse_id(comment_id, "comment id")
    data = payload()
    with engine().begin() as conn:
        return jsonify(anomalies.update_comment(conn, aid, cid, data.get("comment")))


@anomalies_bp.route("/anomalies/<anomaly_id>/comments/<comment_id>", methods=["DELETE"])
def comment_delete(anomaly_id: str, comment_id: str) -> Any:
    aid = parse_id(anomaly_id, "anomaly id")
    cid = parse_id(comment_id, "comment id")
    with engine().begin() as conn:
        anomalies.delete_comment(conn, aid, cid)
    return jsonify({"status": "ok"})
