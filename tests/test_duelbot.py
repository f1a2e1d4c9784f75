import random

from duelbot import BOT_MOVES, BotPolicy
from snakegame import Direction


class ScriptedRandom(random.Random):
    """Random source with a fixed random() value and a fixed choice index."""

    def __init__(self, value: float = 0.0, index: int = 0):
        super().__init__(0)
        self.value = value
        self.index = index
        self.choices_seen = []

    def random(self):
        return self.value

    def choice(self, seq):
        self.choices_seen.append(list(seq))
        return seq[self.index % len(seq)]


def test_safe_moves_exclude_reversal_walls_and_body():
    bot = BotPolicy(rng=ScriptedRandom())
    body = [(0, 5), (1, 5), (1, 4)]
    moves = bot.safe_moves(body, Direction.LEFT, grid_size=10)
    # right is the reversal, left leaves the grid
    assert [d for d, _ in moves] == [Direction.DOWN, Direction.UP]
    assert moves[0][1] == (0, 6)


def test_safe_moves_skip_body_segments():
    bot = BotPolicy(rng=ScriptedRandom())
    body = [(5, 5), (5, 6), (6, 6), (6, 5), (6, 4)]
    moves = bot.safe_moves(body, Direction.UP, grid_size=10)
    assert Direction.RIGHT not in [d for d, _ in moves]
    assert [d for d, _ in moves] == [Direction.LEFT, Direction.UP]


def test_no_safe_move_keeps_current_direction():
    bot = BotPolicy(skill=1.0, rng=ScriptedRandom())
    # Boxed into the corner by its own body
    body = [(0, 0), (1, 0), (1, 1), (0, 1)]
    assert bot.calculate_move(body, Direction.LEFT, (5, 5), grid_size=10) is Direction.LEFT


def test_skilled_bot_heads_for_food():
    bot = BotPolicy(skill=1.0, rng=ScriptedRandom(value=0.5))
    assert bot.calculate_move([(5, 5)], Direction.RIGHT, (5, 9), grid_size=10) is Direction.DOWN
    assert bot.calculate_move([(5, 5)], Direction.RIGHT, (1, 5), grid_size=10) is not Direction.LEFT


def test_equal_distance_ties_follow_move_order():
    bot = BotPolicy(skill=1.0, rng=ScriptedRandom())
    # Food diagonal: right and down are equally close, right comes first
    assert bot.calculate_move([(5, 5)], Direction.NONE, (7, 7), grid_size=10) is Direction.RIGHT
    # Up and left equally close, left comes first
    assert bot.calculate_move([(5, 5)], Direction.NONE, (3, 3), grid_size=10) is Direction.LEFT


def test_unskilled_bot_picks_randomly_among_safe_moves():
    rng = ScriptedRandom(value=0.99, index=1)
    bot = BotPolicy(skill=0.5, rng=rng)
    move = bot.calculate_move([(0, 0)], Direction.LEFT, (9, 9), grid_size=10)
    assert rng.choices_seen[-1] == [(Direction.DOWN, (0, 1))]
    assert move is Direction.DOWN


def test_skill_probability_switches_between_greedy_and_random():
    rng = ScriptedRandom(value=0.69, index=2)
    bot = BotPolicy(skill=0.7, rng=rng)
    assert bot.calculate_move([(5, 5)], Direction.UP, (9, 5), grid_size=10) is Direction.RIGHT

    rng.value = 0.7
    # Random branch: safe moves are right, left, up; index 2 picks up
    assert bot.calculate_move([(5, 5)], Direction.UP, (9, 5), grid_size=10) is Direction.UP


def test_skill_is_clamped():
    assert BotPolicy(skill=3).skill == 1.0
    assert BotPolicy(skill=-1).skill == 0.0
    bot = BotPolicy()
    bot.set_skill(0.25)
    assert bot.skill == 0.25


def test_initial_direction_and_interval_come_from_the_rng():
    bot = BotPolicy(rng=random.Random(5), decision_min=0.2, decision_max=0.5)
    assert bot.initial_direction() in BOT_MOVES
    for _ in range(50):
        assert 0.2 <= bot.decision_interval() <= 0.5


def test_chosen_move_is_always_safe_when_one_exists():
    rng = random.Random(9)
    bot = BotPolicy(skill=0.5, rng=rng)
    body = [(3, 3), (3, 4), (4, 4), (4, 3), (4, 2), (3, 2)]
    for _ in range(100):
        direction = bot.calculate_move(body, Direction.UP, (0, 0), grid_size=8)
        dx, dy = direction.delta
        assert (3 + dx, 3 + dy) not in body
