"""Escape hub service package.

This package provides the team escape-room service built on ``escape_core``,
including:

- Flask API for starting runs, submitting answers and logging actions
- Room catalog loading (rooms, ordered stages, team rosters)
- Team progress persistence with per-team write serialisation
- Settings and logging configuration
"""
