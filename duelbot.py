"""
DuelBot - the opponent that steers the second snake in a match.

Runs in-process on its own decision timer, which is slower and less regular
than the snake's tick, so the bot sometimes keeps heading the same way for a
tick or two after it should have turned.

STRATEGY OVERVIEW
-----------------
On each decision the bot looks exactly one step ahead:

  1. Candidate moves are right, left, down, up (in that order), minus the
     reversal of the current direction.

  2. Survival: a candidate is safe when the new head stays on the grid and
     does not land on any body segment. If nothing is safe the bot keeps its
     direction and takes the crash.

  3. Food pursuit: with probability ``skill`` the bot picks the safe move that
     minimises the Manhattan distance from the new head to the food. Ties go
     to the earlier move in the candidate order.

  4. Randomness: otherwise it picks uniformly among the safe moves.

There is no path search, so the bot can walk into dead ends. That is the
point: ``skill`` is the only difficulty knob.
"""

import random
from typing import Optional

from snakegame import Direction

BOT_MOVES = [Direction.RIGHT, Direction.LEFT, Direction.DOWN, Direction.UP]


class BotPolicy:
    """Greedy/random move picker with a configurable skill level."""

    def __init__(self, skill: float = 0.7, rng: Optional[random.Random] = None,
                 decision_min: float = 0.2, decision_max: float = 0.5):
        self.rng = rng or random.Random()
        self.skill = 0.0
        self.set_skill(skill)
        self.decision_min = decision_min
        self.decision_max = decision_max

    def set_skill(self, skill: float):
        self.skill = max(0.0, min(1.0, skill))

    def initial_direction(self) -> Direction:
        return self.rng.choice(BOT_MOVES)

    def decision_interval(self) -> float:
        """Seconds between decisions for one run."""
        return self.rng.uniform(self.decision_min, self.decision_max)

    def safe_moves(self, body: list, current_dir: Direction, grid_size: int) -> list[tuple[Direction, tuple[int, int]]]:
        """All non-reversing moves whose new head is on the grid and off the body."""
        hx, hy = body[0]
        occupied = set(body)
        moves = []
        for direction in BOT_MOVES:
            if direction is current_dir.opposite:
                continue
            dx, dy = direction.delta
            new_head = (hx + dx, hy + dy)
            if not (0 <= new_head[0] < grid_size and 0 <= new_head[1] < grid_size):
                continue
            if new_head in occupied:
                continue
            moves.append((direction, new_head))
        return moves

    def calculate_move(self, body: list, current_dir: Direction, food: Optional[tuple[int, int]],
                       grid_size: int) -> Direction:
        """Pick the next direction. See the module docstring for the strategy."""
        safe_moves = self.safe_moves(body, current_dir, grid_size)
        if not safe_moves:
            return current_dir

        if food is not None and self.rng.random() < self.skill:
            fx, fy = food
            # min() keeps the first of equally close moves
            direction, _ = min(safe_moves, key=lambda move: abs(move[1][0] - fx) + abs(move[1][1] - fy))
            return direction

        direction, _ = self.rng.choice(safe_moves)
        return direction
