"""INSPIRE-HEP引用グラフライブラリ."""

__version__ = "0.1.0"
