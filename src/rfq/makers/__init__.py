"""Automated maker agents -- pricing strategy, attempt tracking, and the bot pool."""

from rfq.makers.attempts import AttemptTracker
from rfq.makers.bot_pool import MakerAgent, MakerBotPool, build_agents
from rfq.makers.strategy import RandomVarianceStrategy

__all__ = [
    "AttemptTracker",
    "MakerAgent",
    "MakerBotPool",
    "RandomVarianceStrategy",
    "build_agents",
]
