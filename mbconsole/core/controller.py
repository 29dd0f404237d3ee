import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Set

from mbconsole.core.events import (
    ChannelClosed,
    Command,
    ConfigLoaded,
    ConfigSaved,
    Connect,
    Disconnect,
    Event,
    FetchConfig,
    FetchSerialDevices,
    FetchStats,
    FetchStatus,
    FetchVersion,
    LogPushed,
    Read,
    ReadCompleted,
    RequestFailed,
    SaveConfig,
    SerialDevicesFetched,
    Started,
    StatsFetched,
    StatusAcked,
    Unauthorized,
    VersionFetched,
)
from mbconsole.core.reconciler import ConsoleState, reduce
from mbconsole.database.logging import DBLogger
from mbconsole.errors import AuthorizationError, RequestError
from mbconsole.transports.api import ApiClient
from mbconsole.transports.base import EventSource

logger = logging.getLogger("mbconsole.controller")

Observer = Callable[[ConsoleState, Event], None]


class ConsoleController:
    """Drives the reconciler from one asyncio event loop.

    Events from the push channel, command completions and the operator are
    queued and reduced strictly one at a time. Each batch of commands a
    reduction emits runs in its own task: commands run in order, each
    awaited before the next, and a failure ends the batch. Outcomes are
    queued back as events.
    """

    def __init__(
        self,
        api: ApiClient,
        push: Optional[EventSource] = None,
        *,
        state: Optional[ConsoleState] = None,
        db_logger: Optional[DBLogger] = None,
    ):
        self.api = api
        self.push = push
        self.state = state or ConsoleState()
        self.observers: List[Observer] = []
        self.running = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._push_task: Optional[asyncio.Task] = None
        self._command_tasks: Set[asyncio.Task] = set()
        self._logger = db_logger

    def add_observer(self, callback: Observer):
        self.observers.append(callback)

    def remove_observer(self, callback: Observer):
        if callback in self.observers:
            self.observers.remove(callback)

    def dispatch(self, event: Event):
        """Queue an event; safe to call from observers and command tasks."""
        self._queue.put_nowait(event)

    async def start(self, *, initial_fetch: bool = True):
        self.running = True
        if self._logger:
            await self._logger.start()
        self._loop_task = asyncio.create_task(self._event_loop())
        if self.push is not None:
            self._push_task = asyncio.create_task(self._push_loop())
        if initial_fetch:
            self.dispatch(Started())

    async def stop(self):
        self.running = False
        if self._push_task:
            self._push_task.cancel()
            try:
                await self._push_task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("push channel task failed")
            self._push_task = None
        if self.push is not None:
            await self.push.disconnect()

        for task in list(self._command_tasks):
            task.cancel()
        if self._command_tasks:
            await asyncio.gather(*self._command_tasks, return_exceptions=True)

        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        try:
            if self._logger:
                await self._logger.stop()
        finally:
            await self.api.close()

    async def wait_idle(self):
        """Wait until the queue is drained and no command is in flight."""
        while True:
            await self._queue.join()
            pending = [t for t in self._command_tasks if not t.done()]
            if not pending:
                if self._queue.empty():
                    return
                continue
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_for(self, predicate: Callable[[ConsoleState], bool], timeout: Optional[float] = None) -> ConsoleState:
        """Wait until `predicate(state)` holds after some reduction."""
        if predicate(self.state):
            return self.state
        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def check(state: ConsoleState, event: Event):
            if not future.done() and predicate(state):
                future.set_result(state)

        self.add_observer(check)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            self.remove_observer(check)

    async def _event_loop(self):
        while True:
            event = await self._queue.get()
            try:
                self._process(event)
            finally:
                self._queue.task_done()

    def _process(self, event: Event):
        self.state, commands = reduce(self.state, event)
        logger.debug("reduced %s -> %d command(s)", type(event).__name__, len(commands))

        if self._logger and isinstance(event, LogPushed):
            self._logger.enqueue(event.entry)

        for observer in list(self.observers):
            try:
                observer(self.state, event)
            except Exception:
                logger.exception("observer failed on %s", type(event).__name__)

        if commands:
            self._spawn(self._run_commands(commands))

    def _spawn(self, coro: Awaitable):
        task = asyncio.create_task(coro)
        self._command_tasks.add(task)
        task.add_done_callback(self._command_tasks.discard)

    async def _run_commands(self, commands: List[Command]):
        for command in commands:
            try:
                event = await self._execute(command)
            except AuthorizationError:
                self.dispatch(Unauthorized())
                return
            except RequestError as exc:
                logger.info("%s failed: %s", type(command).__name__, exc)
                self.dispatch(RequestFailed(command=command, message=str(exc)))
                return
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.warning("%s returned a malformed response: %s", type(command).__name__, exc)
                self.dispatch(RequestFailed(command=command, message=f"Malformed response: {exc}"))
                return
            self.dispatch(event)

    async def _execute(self, command: Command) -> Event:
        api = self.api
        if isinstance(command, Read):
            return ReadCompleted(await api.read(command.request))
        if isinstance(command, Connect):
            return StatusAcked(await api.connect(), command)
        if isinstance(command, Disconnect):
            return StatusAcked(await api.disconnect(), command)
        if isinstance(command, FetchStatus):
            return StatusAcked(await api.get_status(), command)
        if isinstance(command, SaveConfig):
            config, invocation = await api.save_config(command.config)
            return ConfigSaved(config=config, invocation=invocation, reconnect=command.reconnect)
        if isinstance(command, FetchConfig):
            config, invocation = await api.get_config()
            return ConfigLoaded(config=config, invocation=invocation)
        if isinstance(command, FetchStats):
            return StatsFetched(await api.get_stats())
        if isinstance(command, FetchVersion):
            return VersionFetched(await api.version())
        if isinstance(command, FetchSerialDevices):
            return SerialDevicesFetched(tuple(await api.serial_devices()))
        raise TypeError(f"Unsupported command {command!r}")

    async def _push_loop(self):
        try:
            await self.push.connect()
        except AuthorizationError:
            self.dispatch(Unauthorized())
            return
        except RequestError as exc:
            logger.warning("push channel unavailable: %s", exc)
            self.dispatch(ChannelClosed(reason=str(exc)))
            return

        async for event in self.push.events():
            self.dispatch(event)
        if self.running:
            # state stays as last reported; reconnecting the channel is not ours
            self.dispatch(ChannelClosed())
