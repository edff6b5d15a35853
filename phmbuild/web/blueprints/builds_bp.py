"""构建报告 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response, request

from phmbuild.web.responses import not_found, ok

builds_bp = Blueprint("builds", __name__, url_prefix="/api/builds")


def _svc():  # type: ignore[no-untyped-def]
    from phmbuild.services.container import get_container
    return get_container()


def _safe_int(value: str | None, default: int, lo: int = 1, hi: int = 200) -> int:
    try:
        n = int(value) if value is not None else default
    except ValueError:
        return default
    return max(lo, min(n, hi))


@builds_bp.route("", methods=["GET"])
def list_runs() -> Response:
    unit = request.args.get("unit") or None
    limit = _safe_int(request.args.get("limit"), 20)
    return ok({"runs": _svc().reports.query(unit=unit, limit=limit)})  # type: ignore[return-value]


@builds_bp.route("/markers", methods=["GET"])
def markers() -> Response:
    return ok({"markers": _svc().markers.statuses()})  # type: ignore[return-value]


@builds_bp.route("/units/<name>", methods=["GET"])
def unit_summary(name: str) -> Response:
    return ok(_svc().reports.unit_summary(name))  # type: ignore[return-value]


@builds_bp.route("/<run_id>", methods=["GET"])
def get_run(run_id: str) -> tuple[Response, int] | Response:
    run = _svc().reports.get(run_id)
    if run is None:
        return not_found("运行记录")
    return ok(run)
