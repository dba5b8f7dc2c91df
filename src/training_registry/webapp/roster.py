from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, request

from .. import dashboard
from .. import roster
from ..db import frame_records
from ..training import add_training, employee_certificates, get_q_courses, set_q_course
from .common import as_of_arg, compliance_config, engine, int_arg, payload

roster_bp = Blueprint("roster", __name__)


# --- Employees -------------------------------------------------------------


@roster_bp.route("/employees", methods=["GET"])
def employees_index() -> Any:
    with engine().connect() as conn:
        df = roster.list_active_employees(conn)
    return jsonify(frame_records(df, bool_cols=("is_active",)))


@roster_bp.route("/employees", methods=["POST"])
def employees_create() -> Any:
    data = payload()
    position_ids = data.get("position_ids")
    if position_ids is not None and not isinstance(position_ids, list):
        raise ValueError("position_ids must be a list")
    with engine().begin() as conn:
        employee = roster.create_employee(
            conn,
            data.get("badge_id"),
            data.get("employee_name"),
            position_ids,
            leader=data.get("leader"),
            role=data.get("role"),
        )
        employee["positions"] = roster.employee_positions(conn, employee["employee_id"])
    return jsonify(employee), 201


@roster_bp.route("/employees/search", methods=["GET"])
def employees_search() -> Any:
    limit = int_arg("limit", 100, high=500)
    with engine().connect() as conn:
        df = roster.search_employees(conn, request.args.get("q"), limit=limit)
    return jsonify(frame_records(df, bool_cols=("is_active",)))


@roster_bp.route("/employees/<badge_id>", methods=["GET"])
def employee_detail(badge_id: str) -> Any:
    with engine().connect() as conn:
        detail = roster.get_employee_by_badge(conn, badge_id, as_of=as_of_arg(), cfg=compliance_config())
    detail["requirements"] = frame_records(detail["requirements"])
    return jsonify(detail)


@roster_bp.route("/employees/<badge_id>/certificates", methods=["GET"])
def employee_certs(badge_id: str) -> Any:
    with engine().connect() as conn:
        df = employee_certificates(conn, badge_id, as_of=as_of_arg())
    return jsonify(frame_records(df))


@roster_bp.route("/employees/<int:employee_id>/positions", methods=["POST"])
def employee_add_position(employee_id: int) -> Any:
    data = payload()
    with engine().begin() as conn:
        link = roster.add_employee_position(conn, employee_id, data.get("position_id"), data.get("job_code"))
    return jsonify(link), 201


@roster_bp.route("/employees/<int:employee_id>/positions/<position_id>", methods=["DELETE"])
def employee_remove_position(employee_id: int, position_id: str) -> Any:
    with engine().begin() as conn:
        roster.remove_employee_position(conn, employee_id, position_id)
    return jsonify({"status": "ok"})


@roster_bp.route("/employees/<int:employee_id>/active", methods=["POST"])
def employee_set_active(employee_id: int) -> Any:
    data = payload()
    with engine().begin() as conn:
        employee = roster.set_employee_active(conn, employee_id, data.get("is_active"))
    return jsonify(employee)


@roster_bp.route("/employees/<int:employee_id>/q-courses", methods=["GET"])
def employee_q_courses(employee_id: int) -> Any:
    with engine().connect() as conn:
        roster.get_employee(conn, employee_id)
        return jsonify(get_q_courses(conn, employee_id))


@roster_bp.route("/employees/<int:employee_id>/q-courses", methods=["POST"])
def employee_set_q_course(employee_id: int) -> Any:
    data = payload()
    with engine().begin() as conn:
        result = set_q_course(conn, employee_id, data.get("course_id"), data.get("is_needed"))
    return jsonify(result)


@roster_bp.route("/employees/<int:employee_id>/training", methods=["POST"])
def employee_add_training(employee_id: int) -> Any:
    data = payload()
    with engine().begin() as conn:
        result = add_training(
            conn,
            employee_id,
            data.get("course_id"),
            data.get("completion_date"),
            data.get("expiration_date"),
            data.get("notes"),
        )
    return jsonify(result), 201 if result["created"] else 200


# --- Positions -------------------------------------------------------------


@roster_bp.route("/positions", methods=["GET"])
def positions_index() -> Any:
    with engine().connect() as conn:
        df = roster.list_positions(conn, request.args.get("q"))
    return jsonify(frame_records(df, bool_cols=("is_active",)))


@roster_bp.route("/positions", methods=["POST"])
def positions_create() -> Any:
    data = payload()
    with engine().begin() as conn:
        position = roster.create_position(conn, data.get("position_name"), data.get("description"))
    return jsonify(position), 201


@roster_bp.route("/positions/<position_id>", methods=["GET"])
def position_detail(position_id: str) -> Any:
    with engine().connect() as conn:
        return jsonify(roster.get_position(conn, position_id))


@roster_bp.route("/positions/<position_id>/courses", methods=["POST"])
def position_add_course(position_id: str) -> Any:
    data = payload()
    with engine().begin() as conn:
        roster.add_position_course(conn, position_id, data.get("course_id"))
        detail = roster.get_position(conn, position_id)
    return jsonify(detail), 201


@roster_bp.route("/positions/<position_id>/courses/<course_id>", methods=["DELETE"])
def position_remove_course(position_id: str, course_id: str) -> Any:
    with engine().begin() as conn:
        roster.remove_position_course(conn, position_id, course_id)
    return jsonify({"status": "ok"})


@roster_bp.route("/positions/<position_id>/active", methods=["POST"])
def position_set_active(position_id: str) -> Any:
    data = payload()
    with engine().begin() as conn:
        position = roster.set_position_active(conn, position_id, data.get("is_active"))
    return jsonify(position)


# --- Dashboard and teams ---------------------------------------------------


@roster_bp.route("/metrics", methods=["GET"])
def metrics() -> Any:
    with engine().connect() as conn:
        return jsonify(dashboard.metrics(conn))


@roster_bp.route("/problems", methods=["GET"])
def problems() -> Any:
    with engine().connect() as conn:
        return jsonify(dashboard.problems(conn, as_of=as_of_arg(), cfg=compliance_config()))


@roster_bp.route("/teams", methods=["GET"])
def teams_index() -> Any:
    with engine().connect() as conn:
        return jsonify(roster.leaders(conn))


@roster_bp.route("/teams/<leader>", methods=["GET"])
def team_detail(leader: str) -> Any:
    with engine().connect() as conn:
        df = roster.team(conn, leader)
    return jsonify({"leader": leader, "members": frame_records(df, bool_cols=("is_active",))})


@roster_bp.route("/teams/<leader>/training", methods=["GET"])
def team_training(leader: str) -> Any:
    with engine().connect() as conn:
        return jsonify(dashboard.team_training(conn, leader, as_of=as_of_arg(), cfg=compliance_config()))
