"""查询 Web 服务（基于 Flask）

提供：包索引查询、构建单元与构建计划、构建报告与标记。

启动方式: phmbuild serve --port 8888
生产部署: gunicorn --config deploy/gunicorn.conf.py phmbuild.web.app:app
"""

from __future__ import annotations

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from phmbuild.core.exceptions import PHMBuildError, UnknownUnitError
from phmbuild.web.blueprints import builds_bp, index_bp, units_bp

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.json.sort_keys = False  # type: ignore[attr-defined]

app.register_blueprint(index_bp)
app.register_blueprint(units_bp)
app.register_blueprint(builds_bp)


# =========================================================================
# 全局 JSON 错误处理
# =========================================================================


@app.errorhandler(HTTPException)
def handle_http_exception(exc):
    """将所有 HTTP 异常统一返回 JSON"""
    return jsonify(error=exc.description), exc.code


@app.errorhandler(PHMBuildError)
def handle_build_error(exc):
    """业务异常：单元不存在 404，其余 400"""
    status = 404 if isinstance(exc, UnknownUnitError) else 400
    return jsonify(error=str(exc), code=exc.code), status


@app.errorhandler(Exception)
def handle_generic_exception(exc):  # noqa: ARG001
    """捕获未处理异常，返回 500 JSON"""
    logger.exception("未处理的异常")
    return jsonify(error="服务器内部错误"), 500


@app.route("/api/health")
def health():
    from phmbuild import __version__
    return jsonify(status="ok", version=__version__)


def run_server(port: int = 8888, debug: bool = False, host: str = "127.0.0.1") -> None:
    logger.info("phmbuild Web 服务已启动: http://%s:%d", host, port)
    app.run(host=host, port=port, debug=debug)
