"""Web Blueprint 集合

- index_bp.py:  包索引查询 (/api/index)
- units_bp.py:  构建单元与计划 (/api/units)
- builds_bp.py: 构建报告与标记 (/api/builds)
"""

from phmbuild.web.blueprints.builds_bp import builds_bp
from phmbuild.web.blueprints.index_bp import index_bp
from phmbuild.web.blueprints.units_bp import units_bp

__all__ = [
    "index_bp",
    "units_bp",
    "builds_bp",
]
