"""SnakeDuel configuration: defaults, JSON settings files and validation."""

import copy
import json
import logging
from typing import Optional

logger = logging.getLogger("snakeduel")

DEFAULT_BOT_NAMES = [
    "SnakeBot", "CobraAI", "ViperaBot", "PythonMaster", "SerpentKing",
    "FastSnake", "GreenMamba", "RattleBot", "CobraStrike", "SnakeEye",
    "VenomBot", "SlitherAI", "BoaBot", "AnacondaAI", "KingCobra",
]


class DuelConfig:
    """Settings shared by the engine, the match coordinator and the server."""
    grid_size: int = 20  # Canvas 400px / 20px cells
    player_tick: float = 0.15  # Seconds per player tick
    bot_tick: float = 0.18  # Bot runs slightly slower than the player
    bot_decision_min: float = 0.2  # Bot decision interval is drawn from [min, max] each run
    bot_decision_max: float = 0.5
    bot_skill: float = 0.7  # Probability of a food-seeking move (0.0 = random, 1.0 = greedy)
    food_reward: int = 10
    max_rounds: int = 3
    wins_needed: int = 2
    opponent_delay: float = 2.0  # Seconds spent "finding" an opponent
    round_delay: float = 3.0  # Pause between rounds
    round_time_limit: float = 120.0  # Seconds of survival that end a run (0 = no limit)
    max_sessions: int = 10
    payout_multiplier: float = 2.0  # Prize = stake * multiplier
    # Stake thresholds mapped to bot skill: {stake: skill}
    skill_by_stake: dict = None
    bot_names: list = None

    def __init__(self):
        self.skill_by_stake = {}
        self.bot_names = list(DEFAULT_BOT_NAMES)

    def skill_for_stake(self, stake: float) -> float:
        """Bot skill for a table. The highest stake threshold not above ``stake`` wins."""
        skill = self.bot_skill
        best_threshold: Optional[float] = None
        for threshold, value in self.skill_by_stake.items():
            threshold = float(threshold)
            if threshold <= stake and (best_threshold is None or threshold > best_threshold):
                best_threshold = threshold
                skill = value
        return max(0.0, min(1.0, skill))

    def copy(self) -> "DuelConfig":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "grid_size": self.grid_size,
            "speed": self.player_tick,
            "bot_speed": self.bot_tick,
            "bot_decision": [self.bot_decision_min, self.bot_decision_max],
            "bot_skill": self.bot_skill,
            "skill_by_stake": self.skill_by_stake,
            "food_reward": self.food_reward,
            "max_rounds": self.max_rounds,
            "wins_needed": self.wins_needed,
            "opponent_delay": self.opponent_delay,
            "round_delay": self.round_delay,
            "round_time_limit": self.round_time_limit,
            "max_sessions": self.max_sessions,
            "payout_multiplier": self.payout_multiplier,
        }


def load_spec_file(spec_file: str) -> dict:
    """Load configuration from a JSON settings file."""
    try:
        with open(spec_file, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in {spec_file}: {e}")
        return {}


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_spec(spec: dict, config: Optional[DuelConfig] = None) -> bool:
    """Validate that a spec dictionary has valid values. Returns True if valid.

    Keys missing from the spec are checked against ``config``, the config the
    spec will be applied to (class defaults when omitted).
    """
    if not spec:
        return False

    if "grid_size" in spec and (not _is_int(spec["grid_size"]) or spec["grid_size"] < 5):
        logger.error("Invalid config: 'grid_size' must be an integer of at least 5")
        return False
    for key in ("speed", "bot_speed"):
        if key in spec and (not _is_number(spec[key]) or spec[key] <= 0):
            logger.error(f"Invalid config: '{key}' must be a positive number")
            return False
    if "bot_decision" in spec:
        bounds = spec["bot_decision"]
        if (not isinstance(bounds, list) or len(bounds) != 2
                or not all(_is_number(b) and b > 0 for b in bounds) or bounds[0] > bounds[1]):
            logger.error("Invalid config: 'bot_decision' must be [min, max] positive seconds")
            return False
    if "bot_skill" in spec and (not _is_number(spec["bot_skill"]) or not 0 <= spec["bot_skill"] <= 1):
        logger.error("Invalid config: 'bot_skill' must be between 0 and 1")
        return False
    if "skill_by_stake" in spec:
        table = spec["skill_by_stake"]
        if not isinstance(table, dict):
            logger.error("Invalid config: 'skill_by_stake' must be an object of {stake: skill}")
            return False
        for threshold, skill in table.items():
            try:
                float(threshold)
            except ValueError:
                logger.error(f"Invalid config: stake threshold '{threshold}' is not a number")
                return False
            if not _is_number(skill) or not 0 <= skill <= 1:
                logger.error(f"Invalid config: skill for stake {threshold} must be between 0 and 1")
                return False
    for key in ("food_reward", "max_rounds", "wins_needed", "max_sessions"):
        if key in spec and (not _is_int(spec[key]) or spec[key] < 1):
            logger.error(f"Invalid config: '{key}' must be a positive integer")
            return False
    for key in ("opponent_delay", "round_delay", "round_time_limit"):
        if key in spec and (not _is_number(spec[key]) or spec[key] < 0):
            logger.error(f"Invalid config: '{key}' must be a non-negative number")
            return False
    if "payout_multiplier" in spec and (not _is_number(spec["payout_multiplier"]) or spec["payout_multiplier"] < 0):
        logger.error("Invalid config: 'payout_multiplier' must be a non-negative number")
        return False
    if "bot_names" in spec and (not isinstance(spec["bot_names"], list) or not spec["bot_names"]
                                or not all(isinstance(n, str) and n for n in spec["bot_names"])):
        logger.error("Invalid config: 'bot_names' must be a non-empty list of names")
        return False

    current = config or DuelConfig
    max_rounds = spec.get("max_rounds", current.max_rounds)
    wins_needed = spec.get("wins_needed", current.wins_needed)
    if wins_needed > max_rounds:
        logger.error("Invalid config: 'wins_needed' cannot exceed 'max_rounds'")
        return False

    return True


def apply_spec_to_config(config: DuelConfig, spec: dict):
    """Apply a validated spec dictionary to a config object."""
    if "grid_size" in spec:
        config.grid_size = spec["grid_size"]
    if "speed" in spec:
        config.player_tick = spec["speed"]
    if "bot_speed" in spec:
        config.bot_tick = spec["bot_speed"]
    if "bot_decision" in spec:
        config.bot_decision_min, config.bot_decision_max = spec["bot_decision"]
    if "bot_skill" in spec:
        config.bot_skill = spec["bot_skill"]
    if "skill_by_stake" in spec:
        config.skill_by_stake = {float(k): v for k, v in spec["skill_by_stake"].items()}
    for key in ("food_reward", "max_rounds", "wins_needed", "opponent_delay", "round_delay",
                "round_time_limit", "max_sessions", "payout_multiplier"):
        if key in spec:
            setattr(config, key, spec[key])
    if "bot_names" in spec:
        config.bot_names = list(spec["bot_names"])
