# wg_busy/core/store.py
"""
Config Store

Owns the in-memory AppState and keeps the YAML state file and the
rendered wg0.conf in step with it. Every change goes through write():

    mutate (on a copy) -> persist YAML -> render wg0.conf -> live reload

A failing mutation leaves memory and disk untouched. A failing reload is
only logged, since the files on disk are already correct.
"""

import contextlib
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, TypeVar, Union

import yaml
from pydantic import ValidationError

from ..wireguard.config_builder import render_client_config, render_server_config
from .exceptions import PeerNotFound, PersistenceError, StateLoadError, WireGuardCommandError
from .models import AppState
from .routing import generate_post_down_commands, generate_post_up_commands
from .rwlock import RWLock
from .validation import find_peer

if TYPE_CHECKING:
    from ..wireguard.manager import WireGuardManager

logger = logging.getLogger('wg-busy.store')

T = TypeVar("T")
PathLike = Union[str, Path]


# =============================================================================
# File helpers
# =============================================================================

def write_atomic(path: Path, data: str, mode: int = 0o600) -> None:
    """
    Write via a temp file in the same directory, then rename over path.
    Readers see either the old file or the new one, never a partial write.
    """
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        with contextlib.suppress(FileNotFoundError):
            os.unlink(tmp)
        raise


def dump_state(state: AppState) -> str:
    return yaml.safe_dump(
        state.to_document(),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )


def load_state(path: Path) -> AppState:
    """
    Read the YAML state file.

    A missing or empty file yields the first-run defaults. Anything that is
    not a valid state document raises StateLoadError.
    """
    if not path.exists():
        logger.info(f"No state file at {path}, starting with defaults")
        return AppState.with_defaults()

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise StateLoadError(f"reading config: {e}") from e
    except yaml.YAMLError as e:
        raise StateLoadError(f"parsing config: {e}") from e

    if data is None:
        logger.warning(f"State file {path} is empty, starting with defaults")
        return AppState.with_defaults()
    if not isinstance(data, dict):
        raise StateLoadError(f"parsing config: expected a mapping at top level, got {type(data).__name__}")

    try:
        return AppState.model_validate(data)
    except ValidationError as e:
        raise StateLoadError(f"parsing config: {e}") from e


# =============================================================================
# Store
# =============================================================================

class ConfigStore:
    """
    Single-writer / multi-reader owner of the application state
    """

    def __init__(
        self,
        config_path: PathLike,
        wg_config_path: PathLike,
        state: AppState,
        wireguard: Optional["WireGuardManager"] = None,
        interface: str = "wg0",
    ):
        """
        Args:
            config_path: YAML state file
            wg_config_path: Rendered runtime config (wg0.conf)
            state: Initial state
            wireguard: Manager used for live reloads, None to skip reloading
            interface: Interface name used in generated routing commands
        """
        self.config_path = Path(config_path)
        self.wg_config_path = Path(wg_config_path)
        self.wireguard = wireguard
        self.interface = interface

        self._state = state
        self._lock = RWLock()

    @classmethod
    def load(
        cls,
        config_path: PathLike,
        wg_config_path: PathLike,
        wireguard: Optional["WireGuardManager"] = None,
        interface: str = "wg0",
    ) -> "ConfigStore":
        state = load_state(Path(config_path))
        logger.info(f"Loaded state: {len(state.peers)} peers")
        return cls(config_path, wg_config_path, state, wireguard=wireguard, interface=interface)

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def read(self, fn: Callable[[AppState], T]) -> T:
        """
        Run fn against the live state under the shared lock.
        fn must not mutate the state or call write().
        """
        with self._lock.read_locked():
            return fn(self._state)

    def snapshot(self) -> AppState:
        """Deep copy of the current state"""
        with self._lock.read_locked():
            return self._state.model_copy(deep=True)

    def write(self, fn: Callable[[AppState], T]) -> T:
        """
        Apply fn under the exclusive lock, then persist, render and reload.

        fn receives a private copy of the state. If it raises, the copy is
        dropped and the exception propagates with nothing written.

        The change is committed once the YAML file is saved. A
        PersistenceError from rendering wg0.conf after that point means the
        new state is already live in memory and on disk, so callers must
        not retry it; the next successful write or render_wg_config()
        brings wg0.conf back in step.

        Returns:
            Whatever fn returned

        Raises:
            PersistenceError: saving the YAML file or rendering wg0.conf failed
        """
        with self._lock.write_locked():
            working = self._state.model_copy(deep=True)
            result = fn(working)

            try:
                write_atomic(self.config_path, dump_state(working))
            except OSError as e:
                raise PersistenceError(f"saving config: {e}") from e

            self._state = working

            try:
                write_atomic(self.wg_config_path, self._render(working))
            except OSError as e:
                raise PersistenceError(f"rendering wg config: {e}") from e

            self._reload()
            return result

    # -------------------------------------------------------------------------
    # Rendering
    # -------------------------------------------------------------------------

    def _render(self, state: AppState) -> str:
        post_up = generate_post_up_commands(state.peers, self.interface)
        post_down = generate_post_down_commands(state.peers, self.interface)
        return render_server_config(state, post_up, post_down)

    def _reload(self) -> None:
        if self.wireguard is None:
            return
        try:
            self.wireguard.reload_config()
        except WireGuardCommandError as e:
            logger.warning(f"Reloading wg server failed: {e}")

    def render_wg_config(self) -> None:
        """Write wg0.conf from the current state (used at startup)"""
        with self._lock.read_locked():
            try:
                write_atomic(self.wg_config_path, self._render(self._state))
            except OSError as e:
                raise PersistenceError(f"rendering wg config: {e}") from e

    def server_config_text(self) -> str:
        return self.read(self._render)

    def client_config_text(self, peer_id: str) -> str:
        def _render_client(state: AppState) -> str:
            peer = find_peer(state.peers, peer_id)
            if peer is None:
                raise PeerNotFound(peer_id)
            return render_client_config(state.server, peer)

        return self.read(_render_client)
