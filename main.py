"""SnakeDuel Server - player vs bot Snake matches, best of three rounds."""

import argparse
import asyncio
import json
import os
import random
import logging
from datetime import datetime
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from typing import Optional

from clock import AsyncioClock
from config import DuelConfig, apply_spec_to_config, load_spec_file, validate_spec
from coordinator import MatchCoordinator, MatchObserver, MatchResult, MatchState, Opponent, RoundResult, SettlementEvent
from snakegame import Direction, SnakeSimulation

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(message)s",
    datefmt="%H:%M:%S"
)
logger = logging.getLogger("snakeduel")

DEFAULT_SETTINGS = "server-settings.json"


class SettlementLedger:
    """Inbox of settled matches for the account store. Never touches balances itself."""

    def __init__(self):
        self.entries: list[dict] = []

    def record(self, match_id: str, opponent: Opponent, event: SettlementEvent):
        entry = {
            "match_id": match_id,
            "opponent": opponent.name,
            "timestamp": datetime.now().isoformat(),
            **event.to_dict(),
        }
        self.entries.append(entry)
        logger.info(f"💰 Match {match_id} settled: {event.winner_side.value}, payout {event.payout:.2f}")
        return entry

    def history(self) -> list[dict]:
        return list(self.entries)


class MatchSession(MatchObserver):
    """One match plus the WebSocket clients watching it."""

    def __init__(self, match_id: str, config: DuelConfig, clock, ledger: SettlementLedger,
                 loop: Optional[asyncio.AbstractEventLoop] = None, rng: Optional[random.Random] = None):
        self.match_id = match_id
        self.ledger = ledger
        self.loop = loop
        self.outboxes: list[asyncio.Queue] = []
        self.coordinator = MatchCoordinator(config, clock, rng=rng)
        self.coordinator.subscribe(self)

    @property
    def is_active(self) -> bool:
        return self.coordinator.is_active

    def start(self, stake: float, opponent: Opponent):
        self.coordinator.start_match(stake, opponent)

    def connect(self) -> asyncio.Queue:
        queue = asyncio.Queue()
        self.outboxes.append(queue)
        logger.info(f"✅ [Match {self.match_id}] Client connected ({len(self.outboxes)} client(s))")
        return queue

    def disconnect(self, queue: asyncio.Queue):
        if queue in self.outboxes:
            self.outboxes.remove(queue)
        logger.info(f"❌ [Match {self.match_id}] Client disconnected ({len(self.outboxes)} client(s))")
        # Last client gone mid-match counts as leaving the table
        if not self.outboxes and self.is_active:
            self.coordinator.leave_match()

    def post(self, message: dict):
        """Queue a message for every connected client (callable from any clock callback)."""
        if not self.outboxes or self.loop is None:
            return
        message = {**message, "match_id": self.match_id}
        for queue in list(self.outboxes):
            self.loop.call_soon_threadsafe(queue.put_nowait, message)

    def handle_message(self, data: dict):
        action = data.get("action")
        if action == "move":
            direction = Direction.from_name(data.get("direction"))
            if direction:
                self.coordinator.set_direction(direction)
        elif action == "pause":
            self.coordinator.toggle_pause()
        elif action == "leave":
            if self.is_active:
                self.coordinator.leave_match()

    # MatchObserver

    def on_state_change(self, coordinator: MatchCoordinator, state: MatchState):
        self.post({"type": "state_change", "state": state.value})

    def on_match_start(self, coordinator: MatchCoordinator):
        self.post({
            "type": "match_start",
            "opponent": coordinator.opponent.to_dict(),
            "stake": coordinator.stake,
            "max_rounds": coordinator.config.max_rounds,
        })

    def on_round_start(self, coordinator: MatchCoordinator, round_index: int):
        self.post({
            "type": "start",
            "round": round_index,
            "wins": {"player": coordinator.player_wins, "opponent": coordinator.opponent_wins},
        })

    def on_tick(self, coordinator: MatchCoordinator, side: str, simulation: SnakeSimulation):
        self.post({"type": "state", "side": side, "game": simulation.to_dict()})

    def on_score(self, coordinator: MatchCoordinator, side: str, score: int):
        self.post({"type": "score", "side": side, "score": score})

    def on_round_end(self, coordinator: MatchCoordinator, result: RoundResult):
        self.post({
            "type": "round_end",
            **result.to_dict(),
            "wins": {"player": coordinator.player_wins, "opponent": coordinator.opponent_wins},
        })

    def on_match_end(self, coordinator: MatchCoordinator, result: MatchResult):
        self.post({"type": "match_complete", "result": result.to_dict()})

    def on_settlement(self, coordinator: MatchCoordinator, event: SettlementEvent):
        self.ledger.record(self.match_id, coordinator.opponent, event)

    def to_dict(self) -> dict:
        return {"match_id": self.match_id, "clients": len(self.outboxes), **self.coordinator.to_dict()}


class SessionManager:
    """Creates, finds and cleans up match sessions."""

    def __init__(self, config: DuelConfig, clock=None, ledger: Optional[SettlementLedger] = None,
                 rng: Optional[random.Random] = None):
        self.config = config
        self.clock = clock or AsyncioClock()
        self.ledger = ledger or SettlementLedger()
        self.rng = rng or random.Random()
        self.sessions: dict[str, MatchSession] = {}
        self._next_id = 1

    def _generate_id(self) -> str:
        match_id = f"M{self._next_id}"
        self._next_id += 1
        return match_id

    def active_sessions(self) -> list[MatchSession]:
        return [s for s in self.sessions.values() if s.is_active]

    def choose_opponent(self) -> Opponent:
        """Stand-in for matchmaking: every table is played against a named bot."""
        return Opponent(name=self.rng.choice(self.config.bot_names), is_bot=True)

    def create_session(self, stake: float, loop: Optional[asyncio.AbstractEventLoop] = None) -> Optional[MatchSession]:
        self.cleanup_finished_sessions()
        if len(self.active_sessions()) >= self.config.max_sessions:
            return None

        match_id = self._generate_id()
        # Sessions keep a snapshot so config reloads only affect new matches
        session = MatchSession(
            match_id, self.config.copy(), self.clock, self.ledger,
            loop=loop, rng=random.Random(self.rng.getrandbits(32)),
        )
        self.sessions[match_id] = session
        opponent = self.choose_opponent()
        session.start(stake, opponent)
        logger.info(f"🏠 Match {match_id} created: {opponent.name}, stake {stake:.2f} "
                    f"({len(self.active_sessions())} active)")
        return session

    def get_session(self, match_id: str) -> Optional[MatchSession]:
        return self.sessions.get(match_id)

    def cleanup_finished_sessions(self):
        """Remove finished or abandoned matches nobody is watching."""
        stale = [mid for mid, s in self.sessions.items() if not s.is_active and not s.outboxes]
        for mid in stale:
            del self.sessions[mid]
            logger.info(f"🧹 Match {mid} cleaned up")

    def get_status(self) -> dict:
        return {
            "version": "1.0.0",
            "max_sessions": self.config.max_sessions,
            "active_matches": len(self.active_sessions()),
            "total_sessions": len(self.sessions),
            "settled_matches": len(self.ledger.entries),
            "config": self.config.to_dict(),
            "matches": [
                {
                    "match_id": s.match_id,
                    "state": s.coordinator.state.value,
                    "round": s.coordinator.current_round,
                    "opponent": s.coordinator.opponent.name,
                    "stake": s.coordinator.stake,
                    "wins": {"player": s.coordinator.player_wins, "opponent": s.coordinator.opponent_wins},
                    "clients": len(s.outboxes),
                }
                for s in self.sessions.values()
            ],
        }


class ConfigWatcher:
    """Reload the settings file when it changes. New values apply to new matches."""

    def __init__(self, config: DuelConfig, path: str):
        self.config = config
        self.path = path
        self.mtime = os.path.getmtime(path) if path and os.path.exists(path) else 0.0

    async def watch(self, interval: float = 2.0):
        while True:
            await asyncio.sleep(interval)
            try:
                current_mtime = os.path.getmtime(self.path)
                if current_mtime <= self.mtime:
                    continue
                self.mtime = current_mtime
                logger.info("🔄 Config file changed, attempting to reload...")

                spec = load_spec_file(self.path)
                if not spec:
                    logger.warning("⚠️ Config file is empty or invalid JSON, keeping current settings")
                    continue
                if not validate_spec(spec, self.config):
                    logger.warning("⚠️ Config file has invalid values, keeping current settings")
                    continue

                apply_spec_to_config(self.config, spec)
                logger.info(f"✅ Config reloaded: {self.config.grid_size}x{self.config.grid_size} grid, "
                            f"bot skill {self.config.bot_skill}")
            except FileNotFoundError:
                pass  # File deleted, keep watching
            except OSError as e:
                logger.error(f"Error watching config file: {e}")


async def _pump(websocket: WebSocket, queue: asyncio.Queue, match_id: str):
    """Forward queued match messages to one client, in order."""
    while True:
        message = await queue.get()
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"⚠️ [Match {match_id}] Failed to send to client: {e}")
            return


def create_app(config: DuelConfig, clock=None, settings_path: str = "") -> FastAPI:
    app = FastAPI(title="SnakeDuel Server")

    # Enable CORS for browser clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    manager = SessionManager(config, clock=clock)
    app.state.manager = manager

    @app.on_event("startup")
    async def startup_event():
        logger.info("🐍 SnakeDuel Server started")
        logger.info(f"   Grid: {config.grid_size}x{config.grid_size}, "
                    f"Tick: {config.player_tick}s player / {config.bot_tick}s bot")
        logger.info(f"   Rounds: best of {config.max_rounds}, bot skill {config.bot_skill}")
        if settings_path:
            watcher = ConfigWatcher(config, settings_path)
            app.state.watch_task = asyncio.create_task(watcher.watch())
            logger.info(f"👁️ Watching {os.path.basename(settings_path)} for changes")

    @app.get("/")
    async def root():
        return {"name": "SnakeDuel Server", "status": "running"}

    @app.get("/status")
    async def status():
        return manager.get_status()

    @app.post("/matches")
    async def create_match(stake: float = 10.0):
        """Sit at a table: creates a match against a bot for the given stake."""
        if stake <= 0:
            return {"success": False, "message": "Stake must be positive"}
        session = manager.create_session(stake, loop=asyncio.get_running_loop())
        if not session:
            return {"success": False, "message": "All match slots in use"}
        return {
            "success": True,
            "match_id": session.match_id,
            "stake": stake,
            "opponent": session.coordinator.opponent.to_dict(),
        }

    @app.get("/matches/{match_id}")
    async def get_match(match_id: str):
        session = manager.get_session(match_id)
        if not session:
            raise HTTPException(status_code=404, detail=f"Match {match_id} not found")
        return session.to_dict()

    @app.post("/matches/{match_id}/leave")
    async def leave_match(match_id: str):
        session = manager.get_session(match_id)
        if not session:
            raise HTTPException(status_code=404, detail=f"Match {match_id} not found")
        if not session.is_active:
            return {"success": False, "message": f"Match is already {session.coordinator.state.value}"}
        session.coordinator.leave_match()
        return {"success": True, "state": session.coordinator.state.value}

    @app.get("/history")
    async def settlement_history():
        """Settled matches, oldest first."""
        return {"settlements": manager.ledger.history()}

    @app.websocket("/ws/{match_id}")
    async def play_match(websocket: WebSocket, match_id: str):
        await websocket.accept()
        session = manager.get_session(match_id)
        if not session:
            await websocket.send_json({"type": "error", "message": f"Match {match_id} not found"})
            await websocket.close(code=4004, reason="Unknown match")
            return

        if session.loop is None:
            session.loop = asyncio.get_running_loop()
        await websocket.send_json({"type": "joined", "match_id": match_id, "match": session.to_dict()})
        queue = session.connect()
        sender = asyncio.create_task(_pump(websocket, queue, match_id))
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    data = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning(f"⚠️ [Match {match_id}] Ignoring malformed message")
                    continue
                if isinstance(data, dict):
                    session.handle_message(data)
        except WebSocketDisconnect:
            pass
        finally:
            sender.cancel()
            session.disconnect(queue)

    return app


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="SnakeDuel Server - player vs bot Snake matches",
        usage="python main.py [options] [spec-file]"
    )
    parser.add_argument(
        "spec_file", nargs="?", default=None,
        help=f"Optional JSON config file. Defaults to {DEFAULT_SETTINGS} if it exists."
    )
    parser.add_argument(
        "--grid-size", type=int, default=None,
        help="Grid dimension in cells (square grid). Default: 20"
    )
    parser.add_argument(
        "--speed", type=float, default=None,
        help="Player tick rate in seconds. Default: 0.15"
    )
    parser.add_argument(
        "--bot-speed", type=float, default=None,
        help="Bot tick rate in seconds. Default: 0.18"
    )
    parser.add_argument(
        "--bot-skill", type=float, default=None,
        help="Bot skill from 0.0 (random) to 1.0 (greedy). Default: 0.7"
    )
    parser.add_argument(
        "--round-limit", type=float, default=None,
        help="Seconds of survival that end a run, 0 for no limit. Default: 120"
    )
    parser.add_argument(
        "--max-sessions", type=int, default=None,
        help="Maximum concurrent matches. Default: 10"
    )
    parser.add_argument(
        "--host", type=str, default="0.0.0.0",
        help="Host to bind to. Default: 0.0.0.0"
    )
    parser.add_argument(
        "--port", type=int, default=8765,
        help="Port to bind to. Default: 8765"
    )
    return parser.parse_args()


def apply_config(args, config: DuelConfig) -> str:
    """Apply settings file then CLI overrides. Returns the settings path in use, if any."""
    settings_path = ""
    spec = {}
    if args.spec_file:
        spec = load_spec_file(args.spec_file)
        if spec:
            settings_path = args.spec_file
    else:
        default_spec = os.path.join(os.path.dirname(os.path.abspath(__file__)), DEFAULT_SETTINGS)
        if os.path.exists(default_spec):
            spec = load_spec_file(default_spec)
            if spec:
                settings_path = default_spec

    if spec:
        if validate_spec(spec, config):
            apply_spec_to_config(config, spec)
            logger.info(f"📄 Loaded config from {os.path.basename(settings_path)}")
        else:
            logger.error(f"Ignoring invalid settings in {settings_path}")

    # CLI args override the settings file
    overrides = {}
    if args.grid_size is not None:
        overrides["grid_size"] = args.grid_size
    if args.speed is not None:
        overrides["speed"] = args.speed
    if args.bot_speed is not None:
        overrides["bot_speed"] = args.bot_speed
    if args.bot_skill is not None:
        overrides["bot_skill"] = args.bot_skill
    if args.round_limit is not None:
        overrides["round_time_limit"] = args.round_limit
    if args.max_sessions is not None:
        overrides["max_sessions"] = args.max_sessions
    if overrides:
        if validate_spec(overrides, config):
            apply_spec_to_config(config, overrides)
        else:
            logger.error("Ignoring invalid command line settings")

    return settings_path


if __name__ == "__main__":
    import uvicorn
    args = parse_args()
    config = DuelConfig()
    settings_path = apply_config(args, config)

    logger.info("🎮 Starting SnakeDuel Server")
    logger.info(f"   Grid: {config.grid_size}x{config.grid_size}")
    logger.info(f"   Speed: {config.player_tick}s player, {config.bot_tick}s bot")
    logger.info(f"   Round limit: {config.round_time_limit}s")

    uvicorn.run(create_app(config, settings_path=settings_path), host=args.host, port=args.port)
