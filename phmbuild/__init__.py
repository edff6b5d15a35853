"""phmbuild - PHP 构建流水线核心"""

__version__ = "0.4.0"
