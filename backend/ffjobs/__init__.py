"""
ffjobs: long-running ffmpeg job orchestration.

Supervises ffmpeg subprocesses, decodes their -progress output and fans
the resulting events out to any number of live subscribers.
"""

__version__ = "0.1.0"
