"""Session director: one player's game lifecycle on top of the ledger.

The director owns :class:`PlayerState` and is the only thing that mutates it.
It resumes a stored game after checking ownership, spawns, moves with an
optimistic prediction, applies decoded events, and folds each reconciliation
read back into local state.

Phases::

    DISCONNECTED -> INITIALIZING -> NO_ACTIVE_GAME | ACTIVE
    ACTIVE -> DEAD -> (reset) -> NO_ACTIVE_GAME
"""

import asyncio
import time
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import structlog

from .config import Config
from .encoding import normalize_address
from .events import (
    CombatResult,
    DomainEvent,
    EncounterOccurred,
    HighestScoreUpdated,
    Moved,
    NeighborsRevealed,
    PlayerDied,
    Spawned,
)
from .exceptions import (
    LedgerError,
    MoveRejectedError,
    NoSessionError,
    OwnershipMismatchError,
    TransactionTimeoutError,
)
from .hexgrid import direction_to
from .ledger import (
    GameStateView,
    HighestScore,
    Ledger,
    SessionAccount,
    move_call,
    register_score_call,
    spawn_call,
)
from .logging import SessionLogWriter
from .optimistic import OptimisticMoveController
from .persistence import GameIdStore
from .reconcile import Occurrence, OccurrenceKind, Snapshot, StateDiffer
from .state import PlayerState, SessionPhase
from .transaction import TransactionExecutor
from .types import Direction, HexCoordinate

logger = structlog.get_logger()

DEATH_ON_RESUME = "Fell in a previous battle"
DEATH_EXTERNAL = "Slain by another player"
DEATH_IN_COMBAT = "Defeated in combat with another player"
DEATH_BY_ENCOUNTER = "Killed by a deadly encounter"


class MoveOutcomeKind(str, Enum):
    MOVED = "moved"
    COMBAT_WON = "combat_won"
    COMBAT_LOST = "combat_lost"
    DIED = "died"
    UNCHANGED = "unchanged"


@dataclass(frozen=True)
class MoveOutcome:
    """What a completed move did, as far as its receipt and the follow-up read tell."""

    direction: Direction
    kind: MoveOutcomeKind
    origin: HexCoordinate
    predicted: HexCoordinate
    position: HexCoordinate | None
    hp_delta: int
    xp_delta: int
    events: tuple[DomainEvent, ...] = ()
    death_reason: str | None = None


class SessionListener(Protocol):
    """Read-only consumer of session changes (UI, viewer feed)."""

    def on_state_change(self, state: PlayerState) -> None: ...

    def on_occurrence(self, occurrence: Occurrence) -> None: ...


class SessionDirector:
    def __init__(
        self,
        ledger: Ledger,
        executor: TransactionExecutor,
        config: Config | None = None,
        store: GameIdStore | None = None,
        log_writer: SessionLogWriter | None = None,
    ):
        self.ledger = ledger
        self.executor = executor
        self.config = config or Config()
        self.store = store or GameIdStore(None, prefix=self.config.session.storage_key_prefix)
        self.log_writer = log_writer

        self.state = PlayerState()
        self.optimistic = OptimisticMoveController(self.state, self.config.grid)
        self.differ = StateDiffer()
        self.highest_score: HighestScore | None = None

        self._listeners: list[SessionListener] = []
        self._is_moving = False
        self._is_spawning = False
        self._last_move_done: float | None = None
        self._death_reported_for: int | None = None
        self._background: set[asyncio.Task] = set()

    # Status

    @property
    def contract(self) -> str:
        return self.config.ledger.game_contract

    @property
    def is_moving(self) -> bool:
        return self._is_moving

    @property
    def is_live(self) -> bool:
        """True while there is an active, living game to reconcile."""
        return self.state.phase is SessionPhase.ACTIVE

    @property
    def in_move_window(self) -> bool:
        """True during a move and for a short grace period after it."""
        if self._is_moving:
            return True
        if self._last_move_done is None:
            return False
        grace_s = self.config.reconcile.post_move_grace_ms / 1000
        return time.monotonic() - self._last_move_done < grace_s

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # Session lifecycle

    async def initialize(self, address: str, account: SessionAccount | None = None) -> SessionPhase:
        """Start a session for ``address``, resuming its stored game if it is still ours."""
        if account is not None:
            self.executor.account = account
        address = normalize_address(address)
        self._clear(address)
        self.state.phase = SessionPhase.INITIALIZING
        self._notify_state()

        game_id = self.store.load(address)
        if game_id is None:
            logger.info("session_no_stored_game", address=address)
            return self._set_phase(SessionPhase.NO_ACTIVE_GAME)

        try:
            view = await self.ledger.get_game_state(game_id)
        except LedgerError:
            self._set_phase(SessionPhase.DISCONNECTED)
            raise

        if view is None:
            logger.info("stored_game_missing", address=address, game_id=game_id)
            return self._set_phase(SessionPhase.NO_ACTIVE_GAME)

        try:
            self._check_owner(view)
        except OwnershipMismatchError as e:
            logger.warning("session_ownership_mismatch", game_id=game_id, error=str(e))
            self.store.discard(address)
            return self._set_phase(SessionPhase.NO_ACTIVE_GAME)

        self.state.game_id = game_id
        self.differ.observe(view, self_caused=True)
        self._populate(view, DEATH_ON_RESUME)
        if self.state.is_dead:
            # Died in an earlier session
            self._death_reported_for = game_id
        logger.info(
            "session_resumed",
            address=address,
            game_id=game_id,
            phase=self.state.phase.value,
        )
        return self.state.phase

    def reset(self) -> None:
        """Return to the lobby, e.g. after death."""
        st = self.state
        if st.is_dead and st.address is not None and st.game_id is not None:
            self.store.discard(st.address)
        st.reset(keep_address=True)
        self.differ.reset()
        self._death_reported_for = None
        self._last_move_done = None
        self._set_phase(
            SessionPhase.NO_ACTIVE_GAME if st.address is not None else SessionPhase.DISCONNECTED
        )
        logger.info("session_reset", address=st.address)

    def disconnect(self) -> None:
        self.executor.account = None
        self._clear(None)
        self._set_phase(SessionPhase.DISCONNECTED)
        logger.info("session_disconnected")

    async def drain(self) -> None:
        """Wait for background score registrations to finish."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # Reads

    async def refresh(self) -> list[Occurrence]:
        """Re-read the game, diff against the last read, and apply the result."""
        return await self._sync(None, DEATH_EXTERNAL)

    async def get_highest_score(self) -> HighestScore | None:
        self.highest_score = await self.ledger.get_highest_score()
        return self.highest_score

    # Actions

    async def spawn(self) -> int:
        """Start a new game and return its id."""
        st = self.state
        if st.address is None or not self.executor.has_session:
            raise NoSessionError("Connect a session before spawning")
        if self._is_spawning:
            raise MoveRejectedError("A spawn is already in flight")
        if st.phase is SessionPhase.ACTIVE:
            raise MoveRejectedError(f"Game {st.game_id} is still active")
        if st.phase is SessionPhase.DEAD:
            self.reset()

        self._is_spawning = True
        try:
            events = await self.executor.execute([spawn_call(self.contract)])
            spawned = next((e for e in events if isinstance(e, Spawned) and self._is_us(e.player)), None)
            if spawned is None:
                raise LedgerError("Spawn transaction emitted no Spawned event for this player")

            self.differ.reset()
            self._death_reported_for = None
            for event in events:
                self.apply_event(event)
            self.store.save(st.address, spawned.game_id)
            if self.log_writer is not None:
                self.log_writer.log_events(events)
            logger.info("spawned", game_id=spawned.game_id, q=spawned.position.q, r=spawned.position.r)

            try:
                await self._sync(True, DEATH_EXTERNAL)
            except LedgerError as e:
                logger.warning("post_spawn_refresh_failed", game_id=spawned.game_id, error=str(e))
            return spawned.game_id
        finally:
            self._is_spawning = False

    async def move_to(self, target: HexCoordinate) -> MoveOutcome:
        origin = self.state.effective_position
        direction = direction_to(origin, target) if origin is not None else None
        if direction is None:
            raise MoveRejectedError(f"{target} is not adjacent to {origin}")
        return await self.move(direction)

    async def move(self, direction: Direction) -> MoveOutcome:
        """Move one cell, showing the predicted position until the ledger agrees.

        Raises:
            NoSessionError: If no session account is connected.
            MoveRejectedError: If a local guard rejects the move.
            TransactionRevertedError: If the ledger reverted the move.
            TransactionTimeoutError: If the move's outcome is unknown.
        """
        self._check_move_allowed()
        st = self.state
        origin = st.effective_position
        predicted = self.optimistic.predict(direction)
        if origin is None or predicted is None:
            raise MoveRejectedError(f"Moving {direction.label} from {origin} leaves the grid")

        game_id = st.game_id
        hp_before, xp_before = st.hp, st.xp
        snapshot_before = self.differ.snapshot

        self._is_moving = True
        try:
            self.optimistic.begin(direction)
            self._notify_state()
            logger.info("move_started", game_id=game_id, direction=direction.label, q=predicted.q, r=predicted.r)

            try:
                events = await self.executor.execute(
                    [move_call(self.contract, game_id, direction)],
                    on_revert=self.optimistic.rollback,
                )
            except TransactionTimeoutError as e:
                logger.warning("move_outcome_unknown", game_id=game_id, tx_hash=e.tx_hash)
                await self._resync_after_timeout()
                self._log_move_failure(direction, origin, str(e))
                raise
            except Exception as e:
                self.optimistic.rollback()
                self._notify_state()
                logger.warning("move_failed", game_id=game_id, direction=direction.label, error=str(e))
                self._log_move_failure(direction, origin, str(e))
                raise

            # Receipt events are applied before the follow-up read
            for event in events:
                self.apply_event(event)
            if self.log_writer is not None:
                self.log_writer.log_events(events)
            if self._contradicts(events, game_id, predicted):
                self.optimistic.rollback()

            was_dead = st.is_dead
            death_reason = self._death_reason(events, game_id)
            occurrences: list[Occurrence] = []
            try:
                occurrences = await self._sync(True, death_reason)
            except LedgerError as e:
                logger.warning("post_move_refresh_failed", game_id=game_id, error=str(e))

            died = st.is_dead and not was_dead
            if died and not any(o.kind is OccurrenceKind.DIED for o in occurrences):
                before = snapshot_before or Snapshot(hp=hp_before, position=origin, is_active=True)
                after = self.differ.snapshot or Snapshot(hp=0, position=st.position or origin, is_active=False)
                self._dispatch([Occurrence(OccurrenceKind.DIED, before, after)])

            outcome = MoveOutcome(
                direction=direction,
                kind=self._outcome_kind(events, game_id, died),
                origin=origin,
                predicted=predicted,
                position=st.position,
                hp_delta=st.hp - hp_before,
                xp_delta=st.xp - xp_before,
                events=tuple(events),
                death_reason=st.death_reason if died else None,
            )
            logger.info(
                "move_completed",
                game_id=game_id,
                outcome=outcome.kind.value,
                hp_delta=outcome.hp_delta,
                xp_delta=outcome.xp_delta,
            )
            if self.log_writer is not None:
                self.log_writer.log_move(game_id, outcome)
            return outcome
        finally:
            self._is_moving = False
            self._last_move_done = time.monotonic()

    # Event application

    def apply_event(self, event: DomainEvent) -> None:
        """Fold one decoded event into local state. Events for other games are ignored."""
        st = self.state
        ours = st.game_id

        if isinstance(event, Spawned):
            if not self._is_us(event.player):
                return
            st.game_id = event.game_id
            st.set_position(event.position)
            st.is_spawned = True
            st.is_dead = False
            st.death_xp = None
            st.death_reason = None
            st.can_move = True
            st.last_direction = None
            st.phase = SessionPhase.ACTIVE
        elif isinstance(event, Moved):
            if event.game_id != ours:
                return
            st.set_position(event.position)
            st.last_direction = event.direction
            st.can_move = False
        elif isinstance(event, CombatResult):
            if event.game_id == ours:
                st.set_position(event.attacker_position)
                st.can_move = False
            elif event.defender_game_id == ours:
                st.set_position(event.defender_position)
            else:
                return
        elif isinstance(event, NeighborsRevealed):
            if event.game_id != ours:
                return
            st.occupied_neighbors_mask = event.mask
        elif isinstance(event, EncounterOccurred):
            if event.game_id != ours:
                return
            st.set_stats(event.hp_after, event.max_hp_after, event.xp_after)
        elif isinstance(event, PlayerDied):
            if event.game_id != ours:
                return
            st.hp = 0
            st.can_move = False
        elif isinstance(event, HighestScoreUpdated):
            self.highest_score = HighestScore(player=event.player, username=event.username, xp=event.xp)
        else:
            return

        st.log_event(event.kind, getattr(event, "game_id", None), event.model_dump(mode="json"))
        self._notify_state()

    # Internals

    async def _sync(self, self_caused: bool | None, death_reason: str) -> list[Occurrence]:
        st = self.state
        if st.address is None or st.game_id is None:
            logger.debug("refresh_skipped", reason="no_game")
            return []

        view = await self.ledger.get_game_state(st.game_id)
        if view is None:
            logger.warning("game_state_missing", game_id=st.game_id)
            return []
        self._check_owner(view)

        if self_caused is None:
            self_caused = self.in_move_window
        occurrences = self.differ.observe(view, self_caused=self_caused)
        self._populate(view, death_reason)
        self._dispatch(occurrences)
        return occurrences

    async def _resync_after_timeout(self) -> None:
        try:
            await self._sync(True, DEATH_EXTERNAL)
        except LedgerError as e:
            logger.warning("post_timeout_refresh_failed", game_id=self.state.game_id, error=str(e))
        # Still pending means the ledger does not show the predicted cell
        self.optimistic.rollback()
        self._notify_state()

    def _populate(self, view: GameStateView, death_reason: str) -> None:
        st = self.state
        st.game_id = view.game_id
        st.set_position(view.position)
        st.last_direction = view.last_direction
        st.can_move = view.can_move
        st.occupied_neighbors_mask = view.neighbor_occupancy
        st.set_stats(view.hp, view.max_hp, view.xp)
        self.optimistic.observe_canonical(view.position)

        if view.is_active:
            st.is_spawned = True
            st.phase = SessionPhase.ACTIVE
        elif view.hp == 0:
            if not st.is_dead:
                st.mark_dead(view.xp, death_reason)
                logger.info("player_dead", game_id=view.game_id, xp=view.xp, reason=death_reason)
        else:
            st.is_spawned = False
            st.can_move = False
            st.phase = SessionPhase.NO_ACTIVE_GAME
        self._notify_state()

    def _dispatch(self, occurrences: Sequence[Occurrence]) -> None:
        for occurrence in occurrences:
            if occurrence.kind is OccurrenceKind.DIED:
                self._report_death()
            for listener in list(self._listeners):
                try:
                    listener.on_occurrence(occurrence)
                except Exception as e:
                    logger.warning("listener_failed", callback="on_occurrence", error=str(e))

    def _notify_state(self) -> None:
        for listener in list(self._listeners):
            try:
                listener.on_state_change(self.state)
            except Exception as e:
                logger.warning("listener_failed", callback="on_state_change", error=str(e))

    def _report_death(self) -> None:
        """Register the final score once per game, without waiting for it."""
        st = self.state
        game_id = st.game_id
        if game_id is None or self._death_reported_for == game_id:
            return
        self._death_reported_for = game_id

        xp = st.death_xp if st.death_xp is not None else st.xp
        if not self.executor.has_session or st.address is None:
            logger.info("score_registration_skipped", game_id=game_id, reason="no_session")
            return
        task = asyncio.create_task(self._register_score(game_id, st.address, xp))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _register_score(self, game_id: int, address: str, xp: int) -> None:
        call = register_score_call(self.contract, address, self.config.session.username, xp)
        try:
            await self.executor.execute([call])
        except Exception as e:
            logger.warning("score_registration_failed", game_id=game_id, xp=xp, error=str(e))
            return
        logger.info("score_registered", game_id=game_id, xp=xp)

    def _check_owner(self, view: GameStateView) -> None:
        if not self._is_us(view.player):
            raise OwnershipMismatchError(view.game_id, self.state.address or "", view.player)

    def _is_us(self, address: str) -> bool:
        return self.state.address is not None and normalize_address(address) == normalize_address(
            self.state.address
        )

    def _check_move_allowed(self) -> None:
        st = self.state
        if not self.executor.has_session:
            raise NoSessionError("Connect a session before moving")
        if self._is_moving:
            raise MoveRejectedError("A move is already in flight")
        if st.is_dead:
            raise MoveRejectedError("The player is dead")
        if st.phase is not SessionPhase.ACTIVE or st.game_id is None:
            raise MoveRejectedError("No active game")
        if not st.can_move:
            raise MoveRejectedError("Movement is on cooldown")

    def _clear(self, address: str | None) -> None:
        self.state.reset(keep_address=False)
        self.state.address = address
        self.differ.reset()
        self._death_reported_for = None
        self._last_move_done = None

    def _set_phase(self, phase: SessionPhase) -> SessionPhase:
        self.state.phase = phase
        self._notify_state()
        return phase

    def _log_move_failure(self, direction: Direction, origin: HexCoordinate, reason: str) -> None:
        if self.log_writer is not None:
            self.log_writer.log_move_failure(self.state.game_id, direction, origin, reason)

    @staticmethod
    def _contradicts(events: Sequence[DomainEvent], game_id: int, predicted: HexCoordinate) -> bool:
        """True if the receipt shows the player ending somewhere other than ``predicted``.

        A receipt without a decodable move or combat says nothing either way.
        """
        for event in events:
            if isinstance(event, Moved) and event.game_id == game_id and event.position != predicted:
                return True
            if isinstance(event, CombatResult) and event.game_id == game_id and event.attacker_position != predicted:
                return True
        return False

    @staticmethod
    def _death_reason(events: Sequence[DomainEvent], game_id: int) -> str:
        for event in events:
            if isinstance(event, CombatResult) and event.game_id == game_id and event.attacker_died:
                return DEATH_IN_COMBAT
            if isinstance(event, EncounterOccurred) and event.game_id == game_id and event.died:
                return DEATH_BY_ENCOUNTER
        return DEATH_EXTERNAL

    @staticmethod
    def _outcome_kind(events: Sequence[DomainEvent], game_id: int, died: bool) -> MoveOutcomeKind:
        if died:
            return MoveOutcomeKind.DIED
        combat = next((e for e in events if isinstance(e, CombatResult) and e.game_id == game_id), None)
        if combat is not None:
            return MoveOutcomeKind.COMBAT_WON if combat.won else MoveOutcomeKind.COMBAT_LOST
        if any(isinstance(e, Moved) and e.game_id == game_id for e in events):
            return MoveOutcomeKind.MOVED
        return MoveOutcomeKind.UNCHANGED
