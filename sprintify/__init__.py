"""Sprintify: time-boxed learning and project sprints."""
from sprintify.app import create_app

__all__ = ['create_app']
