"""Small utilities: logging adapters, maps, PCM helpers, timing, stats, concurrency, file copies, templating and translations."""

__version__ = "0.1.0"