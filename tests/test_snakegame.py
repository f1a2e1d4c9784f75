import random

import pytest

from clock import ManualClock
from duelbot import BotPolicy
from snakegame import Direction, SimulationObserver, Snake, SnakeSimulation


class Recorder(SimulationObserver):
    def __init__(self):
        self.finished = []
        self.ticks = 0
        self.scores = []

    def on_tick(self, simulation):
        self.ticks += 1

    def on_score(self, simulation, score):
        self.scores.append(score)

    def on_finish(self, simulation, result):
        self.finished.append(result)


def make_sim(clock=None, seed=1, **kwargs) -> SnakeSimulation:
    return SnakeSimulation(clock or ManualClock(), rng=random.Random(seed), **kwargs)


def test_start_resets_to_single_segment_at_centre():
    sim = make_sim()
    sim.start()
    assert sim.running
    assert sim.snake.body == [(10, 10)]
    assert sim.snake.direction is Direction.NONE
    assert sim.score == 0
    assert sim.food is not None and sim.food != (10, 10)


def test_one_tick_right_moves_head_without_growing():
    sim = make_sim()
    sim.start()
    sim.food = (0, 0)
    assert sim.set_direction(Direction.RIGHT)
    assert sim.step()
    assert sim.snake.head() == (11, 10)
    assert len(sim.snake.body) == 1


def test_tick_without_a_direction_is_a_self_collision():
    sim = make_sim()
    recorder = Recorder()
    sim.subscribe(recorder)
    sim.start()

    assert not sim.step()
    assert not sim.running
    assert sim.snake.body == [(10, 10)]
    assert recorder.finished == [sim.result]
    assert sim.result.reason == "self"
    assert sim.result.ticks == 1


def test_idle_snake_crashes_on_the_first_timer_tick():
    clock = ManualClock()
    sim = make_sim(clock, tick_rate=0.15)
    sim.start()
    clock.run_until_idle()
    assert sim.result.reason == "self"
    assert sim.result.survival_time == pytest.approx(0.15)


def test_self_collision_ignores_food_on_the_body():
    sim = make_sim()
    recorder = Recorder()
    sim.subscribe(recorder)
    sim.start()
    sim.snake.body = [(5, 5), (5, 4), (5, 3)]
    sim.snake.direction = Direction.UP
    sim.food = (5, 4)

    assert not sim.step()
    assert not sim.running
    assert sim.result.reason == "self"
    assert sim.result.score == 0
    assert sim.result.length == 3
    assert recorder.finished == [sim.result]


@pytest.mark.parametrize("direction, start", [
    (Direction.UP, (3, 0)),
    (Direction.DOWN, (3, 19)),
    (Direction.LEFT, (0, 3)),
    (Direction.RIGHT, (19, 3)),
])
def test_leaving_the_grid_is_a_wall_crash(direction, start):
    sim = make_sim()
    sim.start()
    sim.snake.body = [start]
    sim.snake.direction = direction
    assert not sim.step()
    assert sim.result.reason == "wall"


def test_eating_food_grows_and_scores():
    sim = make_sim()
    recorder = Recorder()
    sim.subscribe(recorder)
    sim.start()
    sim.set_direction(Direction.RIGHT)
    sim.food = (11, 10)

    assert sim.step()
    assert sim.snake.body == [(11, 10), (10, 10)]
    assert sim.score == 10
    assert recorder.scores[-1] == 10
    assert sim.food not in sim.snake.body


@pytest.mark.parametrize("current", [Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT])
def test_reversal_never_changes_direction(current):
    sim = make_sim()
    sim.start()
    sim.snake.direction = current
    assert not sim.set_direction(current.opposite)
    assert sim.snake.direction is current


def test_snake_turn_rejects_neutral():
    snake = Snake((4, 4), Direction.LEFT)
    assert not snake.turn(Direction.NONE)
    assert snake.direction is Direction.LEFT


def test_direction_ignored_when_paused_or_stopped():
    sim = make_sim()
    assert not sim.set_direction(Direction.UP)
    sim.start()
    sim.pause()
    assert not sim.set_direction(Direction.UP)
    sim.resume()
    assert sim.set_direction(Direction.UP)


def test_bot_snake_ignores_external_direction():
    sim = make_sim(bot=BotPolicy(rng=random.Random(3)))
    sim.start()
    current = sim.snake.direction
    turn = next(d for d in (Direction.UP, Direction.LEFT) if d not in (current, current.opposite))
    assert not sim.set_direction(turn)
    assert sim.snake.direction is current


def test_body_never_has_duplicates_during_random_play():
    rng = random.Random(7)
    moves = [Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT]
    for seed in range(20):
        sim = make_sim(seed=seed, grid_size=8)
        sim.start()
        while sim.running:
            sim.set_direction(rng.choice(moves))
            # Encourage growth so the body gets long enough to matter
            if rng.random() < 0.3:
                sim.food = sim.snake.get_next_head()
                if not sim.in_bounds(sim.food) or sim.snake.occupies(sim.food):
                    sim.spawn_food()
            if sim.step():
                assert len(set(sim.snake.body)) == len(sim.snake.body)


def test_food_never_spawns_on_snake():
    sim = make_sim(seed=11, grid_size=5)
    sim.start()
    sim.snake.body = [(x, y) for x in range(5) for y in range(5) if (x, y) != (2, 2)][:20]
    for _ in range(200):
        assert sim.spawn_food() not in sim.snake.body


def test_ticks_follow_the_clock():
    clock = ManualClock()
    sim = make_sim(clock, tick_rate=0.15)
    sim.start()
    sim.set_direction(Direction.RIGHT)
    sim.food = (0, 0)
    clock.advance(0.15 * 4 + 0.01)
    assert sim.snake.head() == (14, 10)
    assert sim.ticks == 4


def test_stop_cancels_timers_and_suppresses_result():
    clock = ManualClock()
    sim = make_sim(clock, bot=BotPolicy(rng=random.Random(2)))
    recorder = Recorder()
    sim.subscribe(recorder)
    sim.start()
    clock.advance(0.5)
    ticks = sim.ticks

    sim.stop()
    sim.stop()
    assert clock.pending() == 0
    clock.advance(60)
    assert sim.ticks == ticks
    assert recorder.finished == []
    assert sim.result is None


def test_pause_freezes_ticks_and_survival_time():
    clock = ManualClock()
    sim = make_sim(clock, grid_size=50, tick_rate=0.1)
    sim.start()
    sim.set_direction(Direction.RIGHT)
    sim.food = (0, 0)
    clock.advance(1.05)
    sim.pause()
    ticks, survived = sim.ticks, sim.survival_time()

    clock.advance(5)
    assert sim.ticks == ticks
    assert sim.survival_time() == pytest.approx(survived)

    sim.resume()
    clock.advance(0.5)
    assert sim.ticks > ticks
    assert sim.survival_time() == pytest.approx(survived + 0.5)


def test_time_limit_ends_the_run_once():
    clock = ManualClock()
    sim = make_sim(clock, tick_rate=0.25, time_limit=2.0)
    recorder = Recorder()
    sim.subscribe(recorder)
    sim.start()
    sim.set_direction(Direction.RIGHT)
    sim.food = (0, 0)
    clock.run_until_idle()

    assert len(recorder.finished) == 1
    result = recorder.finished[0]
    assert result.reason == "time_limit"
    assert result.survival_time == 2.0
    assert result.length == 1


@pytest.mark.parametrize("tick_rate", [0.15, 0.18, 0.3])
def test_time_limit_result_reports_the_limit_whatever_the_tick_rate(tick_rate):
    clock = ManualClock()
    sim = make_sim(clock, grid_size=100, tick_rate=tick_rate, time_limit=5.0)
    sim.start()
    sim.set_direction(Direction.RIGHT)
    sim.food = (0, 0)
    clock.run_until_idle()

    assert sim.result.reason == "time_limit"
    assert sim.result.survival_time == 5.0
    # The run itself lasted until the first tick at or past the limit
    assert clock.time() >= 5.0


def test_survival_time_measures_until_crash():
    clock = ManualClock()
    sim = make_sim(clock, tick_rate=0.1)
    sim.start()
    sim.set_direction(Direction.UP)
    sim.food = (0, 0)
    clock.run_until_idle()

    # Head at y=10 crashes on the 11th tick
    assert sim.result.reason == "wall"
    assert sim.result.ticks == 11
    assert sim.result.survival_time == pytest.approx(1.1)


def test_start_while_running_is_ignored():
    sim = make_sim()
    sim.start()
    sim.set_direction(Direction.RIGHT)
    sim.step()
    sim.start()
    assert sim.snake.head() == (11, 10)


def test_restart_after_crash_begins_a_fresh_run():
    sim = make_sim()
    sim.start()
    sim.snake.body = [(0, 0)]
    sim.snake.direction = Direction.LEFT
    sim.step()
    assert sim.result is not None

    sim.start()
    assert sim.result is None
    assert sim.running
    assert sim.snake.body == [(10, 10)]


def test_to_dict_exposes_render_state():
    sim = make_sim()
    sim.start()
    state = sim.to_dict()
    assert state["snake"]["body"] == [(10, 10)]
    assert state["food"] == sim.food
    assert state["score"] == 0
    assert state["is_running"] is True
    assert state["grid"] == {"width": 20, "height": 20}


def test_direction_from_name():
    assert Direction.from_name("up") is Direction.UP
    assert Direction.from_name("Right") is Direction.RIGHT
    assert Direction.from_name("none") is None
    assert Direction.from_name("sideways") is None
    assert Direction.from_name(None) is None
