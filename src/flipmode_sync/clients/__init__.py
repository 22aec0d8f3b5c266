"""Clients for the remote services."""

from .base import ServiceClient
from .coach import CoachClient
from .dialogue import DialogueClient
from .queue import QueueClient
from .research import ResearchBackend
