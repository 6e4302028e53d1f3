"""
Service Layer Package

Business logic between the HTTP layer and the engine/storage layers.

- ProgressService: students, activity, goals, rankings, likes, mailbox
- MotivationTextGenerator: level-up congratulations and exercise tips
"""

from pungpung.services.container import ServiceContainer, create_store, get_container, init_container
from pungpung.services.text_generation import MotivationTextGenerator, ExerciseTip

__all__ = [
    "ServiceContainer",
    "create_store",
    "get_container",
    "init_container",
    "MotivationTextGenerator",
    "ExerciseTip",
]
