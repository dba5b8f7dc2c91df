from __future__ import annotations

from typing import Any

from flask import Blueprint, jsonify, request

from .. import catalog
from ..db import frame_records
from .common import as_of_arg, engine, flag_arg, logger, payload

catalog_bp = Blueprint("catalog", __name__)


@catalog_bp.route("/courses", methods=["GET"])
def courses_index() -> Any:
    with engine().connect() as conn:
        df = catalog.list_courses(conn, request.args.get("q"), active_only=flag_arg("active_only"))
    return jsonify(frame_records(df, bool_cols=("is_active",)))


@catalog_bp.route("/courses", methods=["POST"])
def courses_create() -> Any:
    data = payload()
    with engine().begin() as conn:
        course = catalog.create_course(conn, data.get("course_id"), data.get("course_name"), data.get("duration_months"))
    return jsonify(course), 201


@catalog_bp.route("/courses/<course_id>", methods=["GET"])
def course_detail(course_id: str) -> Any:
    with engine().connect() as conn:
        return jsonify(catalog.get_course(conn, course_id, as_of=as_of_arg()))


@catalog_bp.route("/courses/<course_id>", methods=["PUT"])
def course_update(course_id: str) -> Any:
    data = payload()
    with engine().begin() as conn:
        course = catalog.update_course(
            conn, course_id, data.get("course_name"), data.get("duration_months"), data.get("is_active")
        )
    return jsonify(course)


@catalog_bp.route("/courses/<course_id>", methods=["DELETE"])
def course_delete(course_id: str) -> Any:
    with engine().begin() as conn:
        return jsonify(catalog.delete_course(conn, course_id))


@catalog_bp.route("/course-groups", methods=["GET"])
def groups_index() -> Any:
    with engine().connect() as conn:
        return jsonify(catalog.list_course_groups(conn))


@catalog_bp.route("/course-groups/build", methods=["POST"])
def groups_build() -> Any:
    with engine().begin() as conn:
        return jsonify(catalog.build_course_groups(conn, log=logger()))


@catalog_bp.route("/course-groups/<group_code>/enabled", methods=["POST"])
def group_set_enabled(group_code: str) -> Any:
    data = payload()
    with engine().begin() as conn:
        return jsonify(catalog.set_group_enabled(conn, group_code, data.get("is_enabled")))


@catalog_bp.route("/course-cleanup", methods=["GET"])
def cleanup_review() -> Any:
    with engine().connect() as conn:
        return jsonify(catalog.tcode_review(conn, as_of=as_of_arg()))


@catalog_bp.route("/course-cleanup", methods=["POST"])
def cleanup_decide() -> Any:
    data = payload()
    with engine().begin() as conn:
        decision = catalog.set_cleanup_decision(
            conn,
            data.get("course_id"),
            data.get("action"),
            merge_into=data.get("merge_into"),
            rename_to=data.get("rename_to"),
            is_one_time=bool(data.get("is_one_time")),
            recert_months=data.get("recert_months"),
            notes=data.get("notes"),
            t_code=data.get("t_code"),
        )
    return jsonify(decision)


@catalog_bp.route("/course-cleanup/merge-duplicates", methods=["POST"])
def cleanup_merge() -> Any:
    data = payload()
    dry_run = data.get("dry_run", True)
    if not isinstance(dry_run, bool):
        raise ValueError("dry_run must be a boolean")
    with engine().begin() as conn:
        return jsonify(catalog.apply_duplicate_merge(conn, dry_run=dry_run, log=logger()))
