"""Gunicorn 生产配置

用法:
  PHMBUILD_CONFIG=configs/default.yml \
  gunicorn --config deploy/gunicorn.conf.py phmbuild.web.app:app
"""

import multiprocessing
import os

# ---------- 网络 ----------
bind = os.getenv("GUNICORN_BIND", "0.0.0.0:8888")

# ---------- 并发 ----------
# 只读查询服务，worker 之间不共享状态
workers = int(os.getenv("GUNICORN_WORKERS", min(multiprocessing.cpu_count() + 1, 4)))
threads = int(os.getenv("GUNICORN_THREADS", "4"))
worker_class = "gthread"
timeout = 60

# ---------- 日志 ----------
accesslog = os.getenv("GUNICORN_ACCESS_LOG", "-")
errorlog = os.getenv("GUNICORN_ERROR_LOG", "-")
loglevel = os.getenv("GUNICORN_LOG_LEVEL", "info")

# ---------- 进程管理 ----------
graceful_timeout = 30
keepalive = 5


def on_starting(server):  # noqa: ARG001
    """加载 PHMBUILD_CONFIG 指定的配置"""
    from phmbuild.core.config import init_config
    init_config()
