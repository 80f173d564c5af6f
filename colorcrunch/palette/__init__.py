from .remapper import ColorCruncher

__all__ = ["ColorCruncher"]
