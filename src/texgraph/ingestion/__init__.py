from .sources import SourceBundle, read_tex_sources

__all__ = ["SourceBundle", "read_tex_sources"]
