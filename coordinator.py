"""Match coordinator: two snakes per round, best of three rounds per match.

The coordinator builds a player snake and a bot snake, starts them together
every round, waits until both have crashed (in either order), scores the
round by survival time and decides whether the match is over.

    not_started -> awaiting_start -> round_in_progress (one per round) -> finished

Any state before finished can move to abandoned through leave_match().
"""

import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import DuelConfig
from duelbot import BotPolicy
from snakegame import Direction, SimulationObserver, SimulationResult, SnakeSimulation

logger = logging.getLogger("snakeduel")

PLAYER = "player"
OPPONENT = "opponent"


class MatchState(Enum):
    NOT_STARTED = "not_started"
    AWAITING_START = "awaiting_start"
    ROUND_IN_PROGRESS = "round_in_progress"
    FINISHED = "finished"
    ABANDONED = "abandoned"


class RoundOutcome(Enum):
    WIN = "win"
    LOSE = "lose"
    DRAW = "draw"


class Winner(Enum):
    PLAYER = "player"
    OPPONENT = "opponent"
    DRAW = "draw"


@dataclass(frozen=True)
class Opponent:
    """Opponent descriptor handed over by matchmaking."""
    name: str = "Opponent"
    is_bot: bool = True

    def to_dict(self) -> dict:
        return {"name": self.name, "is_bot": self.is_bot}


@dataclass(frozen=True)
class RoundResult:
    round: int
    outcome: RoundOutcome  # From the player's point of view
    player: SimulationResult
    opponent: SimulationResult

    def to_dict(self) -> dict:
        return {
            "round": self.round,
            "result": self.outcome.value,
            "player_time": self.player.survival_time,
            "opponent_time": self.opponent.survival_time,
            "player_score": self.player.score,
            "opponent_score": self.opponent.score,
            "player": self.player.to_dict(),
            "opponent": self.opponent.to_dict(),
        }


@dataclass(frozen=True)
class MatchResult:
    winner: Winner
    player_wins: int
    opponent_wins: int
    rounds: tuple
    duration: float
    stake: float
    opponent: Opponent
    decided_by: str  # "rounds", "food_score", "survival_time" or "draw"

    def to_dict(self) -> dict:
        return {
            "winner": self.winner.value,
            "player_wins": self.player_wins,
            "opponent_wins": self.opponent_wins,
            "rounds": [r.to_dict() for r in self.rounds],
            "duration": self.duration,
            "stake": self.stake,
            "opponent": self.opponent.to_dict(),
            "decided_by": self.decided_by,
        }


@dataclass(frozen=True)
class SettlementEvent:
    """What the ledger needs to settle a finished match. Emitted once."""
    winner_side: Winner
    stake: float
    survival_time: float  # Player survival in the final round
    round_results: tuple
    payout: float  # Amount credited back to the player: prize, refund or nothing

    def to_dict(self) -> dict:
        return {
            "winner_side": self.winner_side.value,
            "stake": self.stake,
            "survival_time": self.survival_time,
            "round_results": [r.to_dict() for r in self.round_results],
            "payout": self.payout,
        }


def round_outcome(player_time: float, opponent_time: float) -> RoundOutcome:
    """Longer survival wins the round; equal survival is a draw."""
    if player_time > opponent_time:
        return RoundOutcome.WIN
    if player_time < opponent_time:
        return RoundOutcome.LOSE
    return RoundOutcome.DRAW


def decide_winner(rounds: list, player_wins: int, opponent_wins: int) -> tuple[Winner, str]:
    """Winner by round tally, then total food score, then total survival time."""
    if player_wins != opponent_wins:
        return (Winner.PLAYER if player_wins > opponent_wins else Winner.OPPONENT), "rounds"

    player_food = sum(r.player.score for r in rounds)
    opponent_food = sum(r.opponent.score for r in rounds)
    if player_food != opponent_food:
        return (Winner.PLAYER if player_food > opponent_food else Winner.OPPONENT), "food_score"

    player_time = round(sum(r.player.survival_time for r in rounds), 3)
    opponent_time = round(sum(r.opponent.survival_time for r in rounds), 3)
    if player_time != opponent_time:
        return (Winner.PLAYER if player_time > opponent_time else Winner.OPPONENT), "survival_time"

    return Winner.DRAW, "draw"


class MatchObserver:
    """Receives match events. Override the ones you care about.

    The state stays ``round_in_progress`` through the pause between rounds;
    ``on_round_end`` followed by ``on_round_start`` marks the gap.
    """

    def on_state_change(self, coordinator: "MatchCoordinator", state: MatchState):
        pass

    def on_match_start(self, coordinator: "MatchCoordinator"):
        pass

    def on_round_start(self, coordinator: "MatchCoordinator", round_index: int):
        pass

    def on_tick(self, coordinator: "MatchCoordinator", side: str, simulation: SnakeSimulation):
        pass

    def on_score(self, coordinator: "MatchCoordinator", side: str, score: int):
        pass

    def on_round_end(self, coordinator: "MatchCoordinator", result: RoundResult):
        pass

    def on_match_end(self, coordinator: "MatchCoordinator", result: MatchResult):
        pass

    def on_settlement(self, coordinator: "MatchCoordinator", event: SettlementEvent):
        pass


class MatchCoordinator(SimulationObserver):
    """Owns both snakes of one match and runs the best-of-three state machine."""

    def __init__(self, config: DuelConfig, clock, rng: Optional[random.Random] = None):
        self.config = config
        self.clock = clock
        self.rng = rng or random.Random()
        self.observers: list[MatchObserver] = []

        self.state = MatchState.NOT_STARTED
        self.stake = 0.0
        self.opponent = Opponent()
        self.started_at: Optional[float] = None
        self.current_round = 0
        self.player_wins = 0
        self.opponent_wins = 0
        self.rounds: list[RoundResult] = []
        self.result: Optional[MatchResult] = None

        self.player_game: Optional[SnakeSimulation] = None
        self.opponent_game: Optional[SnakeSimulation] = None
        self._pending: dict[str, SimulationResult] = {}
        self._round_open = False
        self._timer = None

    def subscribe(self, observer: MatchObserver):
        if observer not in self.observers:
            self.observers.append(observer)

    def _notify(self, event: str, *args):
        for observer in list(self.observers):
            getattr(observer, event)(self, *args)

    def _set_state(self, state: MatchState):
        self.state = state
        self._notify("on_state_change", state)

    @property
    def is_active(self) -> bool:
        return self.state in (MatchState.AWAITING_START, MatchState.ROUND_IN_PROGRESS)

    # Match lifecycle

    def start_match(self, stake: float, opponent: Optional[Opponent] = None):
        if self.state is not MatchState.NOT_STARTED:
            logger.warning(f"⚠️ start_match called in state {self.state.value}, ignoring")
            return
        if stake <= 0:
            raise ValueError(f"Stake must be positive, got {stake}")

        self.stake = stake
        self.opponent = opponent or Opponent()
        self.started_at = self.clock.time()
        self.current_round = 1
        self.player_wins = 0
        self.opponent_wins = 0
        self.rounds = []
        self._pending = {}

        config = self.config
        self.player_game = SnakeSimulation(
            self.clock, name=PLAYER, grid_size=config.grid_size, tick_rate=config.player_tick,
            food_reward=config.food_reward, time_limit=config.round_time_limit,
            rng=random.Random(self.rng.getrandbits(32)),
        )
        bot = BotPolicy(
            skill=config.skill_for_stake(stake), rng=random.Random(self.rng.getrandbits(32)),
            decision_min=config.bot_decision_min, decision_max=config.bot_decision_max,
        )
        self.opponent_game = SnakeSimulation(
            self.clock, name=OPPONENT, grid_size=config.grid_size, tick_rate=config.bot_tick,
            food_reward=config.food_reward, time_limit=config.round_time_limit,
            rng=random.Random(self.rng.getrandbits(32)), bot=bot,
        )
        self.player_game.subscribe(self)
        self.opponent_game.subscribe(self)

        logger.info(f"🎲 Match requested: stake {stake:.2f} vs {self.opponent.name} (bot skill {bot.skill:.2f})")
        self._set_state(MatchState.AWAITING_START)
        self._timer = self.clock.call_later(config.opponent_delay, self._on_opponent_found)

    def _on_opponent_found(self):
        self._timer = None
        if self.state is not MatchState.AWAITING_START:
            return
        self._set_state(MatchState.ROUND_IN_PROGRESS)
        self._notify("on_match_start")
        self.start_round()

    def start_round(self):
        self._timer = None
        if self.state is not MatchState.ROUND_IN_PROGRESS or self._round_open:
            logger.warning(f"⚠️ start_round called in state {self.state.value}, ignoring")
            return

        self._pending = {}
        self._round_open = True
        logger.info(f"🎮 Round {self.current_round} started (Score: {self.player_wins}-{self.opponent_wins})")
        self._notify("on_round_start", self.current_round)
        self.player_game.start()
        self.opponent_game.start()

    def _side_of(self, simulation: SnakeSimulation) -> Optional[str]:
        if simulation is self.player_game:
            return PLAYER
        if simulation is self.opponent_game:
            return OPPONENT
        return None

    # SimulationObserver

    def on_tick(self, simulation: SnakeSimulation):
        side = self._side_of(simulation)
        if side:
            self._notify("on_tick", side, simulation)

    def on_score(self, simulation: SnakeSimulation, score: int):
        side = self._side_of(simulation)
        if side:
            self._notify("on_score", side, score)

    def on_finish(self, simulation: SnakeSimulation, result: SimulationResult):
        side = self._side_of(simulation)
        if side is None or self.state is not MatchState.ROUND_IN_PROGRESS or not self._round_open:
            return
        if side in self._pending:
            logger.warning(f"⚠️ Duplicate {side} result in round {self.current_round}, ignoring")
            return
        self._pending[side] = result
        if PLAYER in self._pending and OPPONENT in self._pending:
            self._end_round()

    def _end_round(self):
        self._round_open = False
        self.player_game.stop()
        self.opponent_game.stop()

        player_stats = self._pending[PLAYER]
        opponent_stats = self._pending[OPPONENT]
        self._pending = {}

        outcome = round_outcome(player_stats.survival_time, opponent_stats.survival_time)
        if outcome is RoundOutcome.WIN:
            self.player_wins += 1
        elif outcome is RoundOutcome.LOSE:
            self.opponent_wins += 1

        result = RoundResult(self.current_round, outcome, player_stats, opponent_stats)
        self.rounds.append(result)
        logger.info(
            f"🏁 Round {self.current_round}: {outcome.value} "
            f"({player_stats.survival_time}s vs {opponent_stats.survival_time}s, "
            f"match {self.player_wins}-{self.opponent_wins})"
        )
        self._notify("on_round_end", result)

        # The observer may have left the match
        if self.state is not MatchState.ROUND_IN_PROGRESS:
            return

        if self._match_over():
            self.end_match()
        else:
            self.current_round += 1
            self._timer = self.clock.call_later(self.config.round_delay, self.start_round)

    def _match_over(self) -> bool:
        wins_needed = self.config.wins_needed
        return (len(self.rounds) >= self.config.max_rounds
                or self.player_wins >= wins_needed
                or self.opponent_wins >= wins_needed)

    def end_match(self):
        if self.state is not MatchState.ROUND_IN_PROGRESS or self._round_open or not self._match_over():
            logger.warning(f"⚠️ end_match called in state {self.state.value} after {len(self.rounds)} round(s), ignoring")
            return
        if self._timer:
            self._timer.cancel()
            self._timer = None

        winner, decided_by = decide_winner(self.rounds, self.player_wins, self.opponent_wins)
        rounds = tuple(self.rounds)
        self.result = MatchResult(
            winner=winner,
            player_wins=self.player_wins,
            opponent_wins=self.opponent_wins,
            rounds=rounds,
            duration=round(self.clock.time() - self.started_at, 3),
            stake=self.stake,
            opponent=self.opponent,
            decided_by=decided_by,
        )

        if winner is Winner.PLAYER:
            payout = self.stake * self.config.payout_multiplier
        elif winner is Winner.DRAW:
            payout = self.stake
        else:
            payout = 0.0
        settlement = SettlementEvent(
            winner_side=winner,
            stake=self.stake,
            survival_time=rounds[-1].player.survival_time if rounds else 0.0,
            round_results=rounds,
            payout=payout,
        )

        self._discard_games()
        logger.info(f"🏆 Match complete: {winner.value} ({self.player_wins}-{self.opponent_wins}, by {decided_by})")
        self._set_state(MatchState.FINISHED)
        self._notify("on_match_end", self.result)
        self._notify("on_settlement", settlement)

    def leave_match(self):
        if self.state in (MatchState.FINISHED, MatchState.ABANDONED):
            logger.warning(f"⚠️ leave_match called in state {self.state.value}, ignoring")
            return

        if self._timer:
            self._timer.cancel()
            self._timer = None
        self._round_open = False
        self._pending = {}
        self._discard_games()
        logger.info(f"🚪 Match abandoned in round {self.current_round}")
        self._set_state(MatchState.ABANDONED)

    def _discard_games(self):
        for game in (self.player_game, self.opponent_game):
            if game:
                game.stop()
                game.unsubscribe(self)
        self.player_game = None
        self.opponent_game = None

    # Player input

    def set_direction(self, direction: Direction) -> bool:
        if self.state is not MatchState.ROUND_IN_PROGRESS or not self.player_game:
            return False
        return self.player_game.set_direction(direction)

    def toggle_pause(self):
        if self.state is not MatchState.ROUND_IN_PROGRESS or not self.player_game:
            return
        self.player_game.toggle_pause()

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "stake": self.stake,
            "opponent": self.opponent.to_dict(),
            "round": self.current_round,
            "max_rounds": self.config.max_rounds,
            "wins": {PLAYER: self.player_wins, OPPONENT: self.opponent_wins},
            "rounds": [r.to_dict() for r in self.rounds],
            "player": self.player_game.to_dict() if self.player_game else None,
            "opponent_game": self.opponent_game.to_dict() if self.opponent_game else None,
            "result": self.result.to_dict() if self.result else None,
        }
