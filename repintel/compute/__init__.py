"""Scan orchestration: job lifecycle, report cache, report assembly."""
