"""
Process Console - attaches the bridge to a game server child process

Starts the configured server command, pumps its stdout line by line into a
callback and writes commands to its stdin. Restart and crash handling belong
to whatever supervises this process, not to this class.
"""

import logging
import asyncio
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger('integrations.console.process_console')

LineHandler = Callable[[str], Awaitable[None]]
ExitHandler = Callable[[], Awaitable[None]]


class ProcessConsole:
    """Owns one game server child process and its stdio pipes"""

    def __init__(self, command: List[str], cwd: Optional[str] = None):
        self.command = command
        self.cwd = cwd
        self.process: Optional[asyncio.subprocess.Process] = None
        self.pump_task: Optional[asyncio.Task] = None

        logger.info(f"ProcessConsole initialized for {' '.join(command)}")

    @property
    def is_running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    async def start(self, on_line: LineHandler, on_exit: ExitHandler) -> bool:
        """
        Launch the server process.

        Args:
            on_line: Awaited with every line of output
            on_exit: Awaited once after the process has exited

        Returns:
            True if the process was started
        """
        if self.is_running:
            logger.warning("Server process already running")
            return True

        try:
            self.process = await asyncio.create_subprocess_exec(
                *self.command,
                cwd=self.cwd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to start server process {self.command}: {e}")
            return False

        self.pump_task = asyncio.create_task(self._pump(on_line, on_exit))
        logger.info(f"Server process started (pid {self.process.pid})")
        return True

    def send_input(self, line: str) -> bool:
        """Write one command line to the server; False if it is not running"""
        if not self.is_running or self.process.stdin is None:
            return False
        try:
            self.process.stdin.write((line + "\n").encode('utf-8'))
            return True
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"Console write failed: {e}")
            return False

    async def wait(self) -> Optional[int]:
        if self.pump_task is not None:
            await self.pump_task
        return self.process.returncode if self.process else None

    async def stop(self, timeout: float = 30.0) -> None:
        """Ask the server to stop, terminating it if it does not exit in time"""
        if not self.is_running:
            return

        self.send_input("stop")
        try:
            await asyncio.wait_for(self.process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Server did not stop in time, terminating")
            self.process.terminate()
            await self.process.wait()

        if self.pump_task is not None:
            await self.pump_task

    async def _pump(self, on_line: LineHandler, on_exit: ExitHandler) -> None:
        try:
            while True:
                raw = await self.process.stdout.readline()
                if not raw:
                    break
                try:
                    await on_line(raw.decode('utf-8', errors='replace'))
                except Exception as e:
                    logger.error(f"Console line handler failed: {e}")

            return_code = await self.process.wait()
            logger.info(f"Server process exited with code {return_code}")
            await on_exit()

        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Console pump failed: {e}")
