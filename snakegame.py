"""Single-snake simulation: movement, food, collisions and the tick clock.

A SnakeSimulation owns one snake on one square grid. It ticks on its own
fixed period through an injected clock and, when given a bot policy, steers
itself on a second, slower decision timer. When a tick is fatal it stops both
timers and notifies its observers exactly once with a SimulationResult.
"""

import logging
import random
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Optional

logger = logging.getLogger("snakeduel")


class Direction(Enum):
    NONE = (0, 0)
    UP = (0, -1)
    DOWN = (0, 1)
    LEFT = (-1, 0)
    RIGHT = (1, 0)

    @property
    def delta(self) -> tuple[int, int]:
        return self.value

    @property
    def opposite(self) -> "Direction":
        dx, dy = self.value
        return Direction((-dx, -dy))

    @classmethod
    def from_name(cls, name: str) -> Optional["Direction"]:
        """Map an input name ("up", "down", "left", "right") to a direction."""
        if not isinstance(name, str):
            return None
        direction = cls.__members__.get(name.upper())
        if direction is cls.NONE:
            return None
        return direction


@dataclass(frozen=True)
class SimulationResult:
    """Final stats of one run, produced when the snake crashes."""
    score: int
    survival_time: float  # Seconds of unpaused play
    length: int
    ticks: int
    reason: str  # "wall", "self" or "time_limit"

    def to_dict(self) -> dict:
        return asdict(self)


class SimulationObserver:
    """Receives simulation events. Override the ones you care about."""

    def on_start(self, simulation: "SnakeSimulation"):
        pass

    def on_tick(self, simulation: "SnakeSimulation"):
        pass

    def on_score(self, simulation: "SnakeSimulation", score: int):
        pass

    def on_finish(self, simulation: "SnakeSimulation", result: SimulationResult):
        pass


class Snake:
    def __init__(self, start_pos: tuple[int, int], direction: Direction = Direction.NONE):
        self.body = [start_pos]
        self.direction = direction

    def head(self) -> tuple[int, int]:
        return self.body[0]

    def turn(self, direction: Direction) -> bool:
        """Change direction unless it is a 180 degree reversal. Returns True if applied."""
        if direction is Direction.NONE or direction is self.direction.opposite:
            return False
        self.direction = direction
        return True

    def get_next_head(self, direction: Optional[Direction] = None) -> tuple[int, int]:
        hx, hy = self.head()
        dx, dy = (direction or self.direction).delta
        return (hx + dx, hy + dy)

    def occupies(self, pos: tuple[int, int]) -> bool:
        return pos in self.body

    def move(self, grow: bool = False):
        self.body.insert(0, self.get_next_head())
        if not grow:
            self.body.pop()

    def to_dict(self) -> dict:
        return {
            "body": list(self.body),
            "direction": self.direction.name.lower(),
        }


class SnakeSimulation:
    """One snake, one grid, one tick clock."""

    def __init__(self, clock, name: str = "player", grid_size: int = 20, tick_rate: float = 0.15,
                 food_reward: int = 10, time_limit: float = 0.0,
                 rng: Optional[random.Random] = None, bot=None):
        self.clock = clock
        self.name = name
        self.grid_size = grid_size
        self.tick_rate = tick_rate
        self.food_reward = food_reward
        self.time_limit = time_limit
        self.rng = rng or random.Random()
        self.bot = bot  # BotPolicy for self-driven snakes, None for player input
        self.observers: list[SimulationObserver] = []

        self.snake = Snake(self.start_position())
        self.food: Optional[tuple[int, int]] = None
        self.score = 0
        self.ticks = 0
        self.running = False
        self.paused = False
        self.result: Optional[SimulationResult] = None

        self._tick_handle = None
        self._bot_handle = None
        self._decision_interval = 0.0
        self._started_at: Optional[float] = None
        self._paused_at: Optional[float] = None
        self._paused_total = 0.0

    @property
    def is_bot(self) -> bool:
        return self.bot is not None

    def start_position(self) -> tuple[int, int]:
        return (self.grid_size // 2, self.grid_size // 2)

    def subscribe(self, observer: SimulationObserver):
        if observer not in self.observers:
            self.observers.append(observer)

    def unsubscribe(self, observer: SimulationObserver):
        if observer in self.observers:
            self.observers.remove(observer)

    def _notify(self, event: str, *args):
        for observer in list(self.observers):
            getattr(observer, event)(self, *args)

    # Lifecycle

    def start(self):
        if self.running:
            logger.warning(f"⚠️ [{self.name}] start called while running, ignoring")
            return

        self._cancel_timers()
        self.snake = Snake(self.start_position())
        self.score = 0
        self.ticks = 0
        self.result = None
        self.paused = False
        self._paused_at = None
        self._paused_total = 0.0
        self._started_at = self.clock.time()
        self.running = True
        self.spawn_food()

        if self.bot:
            self.snake.turn(self.bot.initial_direction())
            self._decision_interval = self.bot.decision_interval()
            self._schedule_decision()

        self._schedule_tick()
        self._notify("on_start")
        self._notify("on_score", self.score)

    def stop(self):
        """Halt both timers without reporting a result. Safe to call repeatedly."""
        self.running = False
        self.paused = False
        self._cancel_timers()

    def pause(self):
        if not self.running or self.paused:
            return
        self.paused = True
        self._paused_at = self.clock.time()
        self._cancel_timers()

    def resume(self):
        if not self.running or not self.paused:
            return
        self._paused_total += self.clock.time() - self._paused_at
        self._paused_at = None
        self.paused = False
        if self.bot:
            self._schedule_decision()
        self._schedule_tick()

    def toggle_pause(self):
        if self.paused:
            self.resume()
        else:
            self.pause()

    def set_direction(self, direction: Direction) -> bool:
        """Player input. Ignored for bots, while paused or not running, and for reversals."""
        if self.bot is not None:
            logger.debug(f"[{self.name}] external direction ignored for bot snake")
            return False
        if not self.running or self.paused:
            return False
        return self.snake.turn(direction)

    # Timers

    def _schedule_tick(self):
        self._tick_handle = self.clock.call_later(self.tick_rate, self._on_tick_timer)

    def _schedule_decision(self):
        self._bot_handle = self.clock.call_later(self._decision_interval, self._on_decision_timer)

    def _cancel_timers(self):
        if self._tick_handle:
            self._tick_handle.cancel()
            self._tick_handle = None
        if self._bot_handle:
            self._bot_handle.cancel()
            self._bot_handle = None

    def _on_tick_timer(self):
        self._tick_handle = None
        if not self.running or self.paused:
            return
        if self.step():
            self._schedule_tick()

    def _on_decision_timer(self):
        self._bot_handle = None
        if not self.running or self.paused:
            return
        self.make_bot_decision()
        self._schedule_decision()

    # Simulation

    def survival_time(self) -> float:
        if self._started_at is None:
            return 0.0
        now = self._paused_at if self.paused else self.clock.time()
        return max(0.0, now - self._started_at - self._paused_total)

    def spawn_food(self) -> tuple[int, int]:
        """Place food on a random free cell, redrawing while it lands on the snake."""
        while True:
            pos = (self.rng.randrange(self.grid_size), self.rng.randrange(self.grid_size))
            if not self.snake.occupies(pos):
                self.food = pos
                return pos

    def in_bounds(self, pos: tuple[int, int]) -> bool:
        x, y = pos
        return 0 <= x < self.grid_size and 0 <= y < self.grid_size

    def step(self) -> bool:
        """Advance one tick. Returns False if the snake is no longer running afterwards."""
        if not self.running:
            return False

        self.ticks += 1
        if self.time_limit and self.survival_time() >= self.time_limit:
            self._finish("time_limit", survival_time=self.time_limit)
            return False

        # With no direction yet the candidate is the head itself: a self collision
        next_head = self.snake.get_next_head()
        if not self.in_bounds(next_head):
            self._finish("wall")
            return False
        if self.snake.occupies(next_head):
            self._finish("self")
            return False

        grow = next_head == self.food
        self.snake.move(grow)
        if grow:
            self.score += self.food_reward
            self.spawn_food()
            self._notify("on_score", self.score)

        self._notify("on_tick")
        return True

    def make_bot_decision(self):
        if not self.bot or not self.running or self.paused:
            return
        direction = self.bot.calculate_move(self.snake.body, self.snake.direction, self.food, self.grid_size)
        self.snake.turn(direction)

    def _finish(self, reason: str, survival_time: Optional[float] = None):
        if survival_time is None:
            survival_time = self.survival_time()
        self.running = False
        self.paused = False
        self._cancel_timers()
        self.result = SimulationResult(
            score=self.score,
            survival_time=round(survival_time, 3),
            length=len(self.snake.body),
            ticks=self.ticks,
            reason=reason,
        )
        logger.debug(f"[{self.name}] crashed ({reason}) after {self.result.survival_time}s, score {self.score}")
        self._notify("on_finish", self.result)

    # Rendering feed

    def stats(self) -> dict:
        return {
            "score": self.score,
            "survival_time": round(self.survival_time(), 3),
            "snake_length": len(self.snake.body),
            "is_running": self.running,
            "is_paused": self.paused,
        }

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "bot": self.is_bot,
            "grid": {"width": self.grid_size, "height": self.grid_size},
            "snake": self.snake.to_dict(),
            "food": self.food,
            "ticks": self.ticks,
            **self.stats(),
        }
