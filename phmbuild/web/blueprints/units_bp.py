"""构建单元 API Blueprint"""

from __future__ import annotations

from flask import Blueprint, Response, request

from phmbuild.web.responses import bad_request, ok

units_bp = Blueprint("units", __name__, url_prefix="/api/units")


def _svc():  # type: ignore[no-untyped-def]
    from phmbuild.services.container import get_container
    return get_container()


@units_bp.route("", methods=["GET"])
def list_units() -> tuple[Response, int] | Response:
    from phmbuild.core.models import UnitKind
    registry = _svc().registry
    kind = request.args.get("kind", "")
    if kind:
        try:
            units = registry.by_kind(UnitKind(kind))
        except ValueError:
            return bad_request(f"未知单元类型: {kind}")
    else:
        units = registry.all()
    return ok({"units": [u.to_dict() for u in units], "total": len(units)})


@units_bp.route("/<name>/plan", methods=["GET"])
def plan(name: str) -> Response:
    force = request.args.get("force", "") in ("1", "true")
    return ok({"plan": _svc().pipeline.plan([name], force=force).to_dict()})  # type: ignore[return-value]


@units_bp.route("/<name>", methods=["GET"])
def get_unit(name: str) -> Response:
    svc = _svc()
    unit = svc.registry.get(name)
    data = unit.to_dict()
    data["built"] = svc.markers.is_built(unit.name, unit.version)
    return ok({"unit": data})  # type: ignore[return-value]
