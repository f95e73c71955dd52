"""wikirank: hybrid dense + lexical retrieval and ranking core for wiki/ticket pages."""

__version__ = "0.1.0"
