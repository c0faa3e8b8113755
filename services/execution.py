"""
Command execution service
Runs single commands or producer | consumer pipelines and reports their outcome
"""
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Tuple

from models.builders import Command, CommandSpec, PipedCommand
from models.results import CommandResult

logger = logging.getLogger(__name__)


class CommandExecutor(ABC):
    """Runs a command or pipeline and reports the outcome as data"""

    @abstractmethod
    def run(self, command: CommandSpec) -> CommandResult:
        """Execute the command; never raises for process failures"""


class SubprocessExecutor(CommandExecutor):
    """Executes commands as local processes with captured output"""

    def run(self, command: CommandSpec) -> CommandResult:
        if isinstance(command, PipedCommand):
            return self.run_piped(command)
        return self.run_single(command)

    def run_single(self, command: Command) -> CommandResult:
        """Run one process to completion, capturing stdout and stderr separately"""
        logger.debug(f"Executing: {command.command_text}")
        try:
            result = subprocess.run(
                command.argv,
                capture_output=True,
                text=True,
                errors="replace",
                env=self._build_env(command.env),
            )
        except OSError as e:
            logger.error(f"Failed to start {command.argv[0]}: {e}")
            return self._start_failure(command.command_text, e)

        if result.returncode != 0:
            logger.warning(f"Command exited with {result.returncode}: {command.command_text}")

        return CommandResult(
            command_text=command.command_text,
            succeeded=result.returncode == 0,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            returncode=result.returncode,
        )

    def run_piped(self, command: PipedCommand) -> CommandResult:
        """Run producer | consumer; succeeds only if both processes exit 0"""
        command_text = command.command_text
        logger.debug(f"Executing pipeline: {command_text}")

        try:
            producer = subprocess.Popen(
                command.producer.argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._build_env(command.producer.env),
            )
        except OSError as e:
            logger.error(f"Failed to start {command.producer.argv[0]}: {e}")
            return self._start_failure(command_text, e)

        try:
            consumer = subprocess.Popen(
                command.consumer.argv,
                stdin=producer.stdout,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._build_env(command.consumer.env),
            )
        except OSError as e:
            logger.error(f"Failed to start {command.consumer.argv[0]}: {e}")
            producer.kill()
            producer.communicate()
            return self._start_failure(command_text, e)

        # The consumer holds its own copy; ours must go so it sees EOF when the producer exits
        producer.stdout.close()

        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="pipeline") as pool:
            producer_future = pool.submit(self._join_producer, producer)
            consumer_future = pool.submit(consumer.communicate)
            consumer_out, consumer_err = consumer_future.result()
            producer_code, producer_err = producer_future.result()

        stdout = consumer_out.decode(errors='replace')
        stderr = consumer_err.decode(errors='replace')

        error_message = None
        returncode = consumer.returncode
        if producer_code != 0:
            error_message = (
                f"{command.producer.argv[0]} exited with {producer_code}: {producer_err.strip()}"
            )
            returncode = producer_code
            logger.warning(f"Pipeline producer failed: {error_message}")
        elif consumer.returncode != 0:
            error_message = f"{command.consumer.argv[0]} exited with {consumer.returncode}"
            logger.warning(f"Pipeline consumer failed: {error_message}")

        return CommandResult(
            command_text=command_text,
            succeeded=producer_code == 0 and consumer.returncode == 0,
            stdout=stdout,
            stderr=stderr,
            returncode=returncode,
            error_message=error_message,
        )

    @staticmethod
    def _join_producer(producer: subprocess.Popen) -> Tuple[int, str]:
        """Drain the producer's stderr and wait for it to exit"""
        err = producer.stderr.read()
        producer.stderr.close()
        return producer.wait(), err.decode(errors='replace')

    @staticmethod
    def _build_env(extra: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if not extra:
            return None
        env = os.environ.copy()
        env.update(extra)
        return env

    @staticmethod
    def _start_failure(command_text: str, error: OSError) -> CommandResult:
        return CommandResult(
            command_text=command_text,
            succeeded=False,
            stderr=f"Execution error: {error}",
            returncode=-1,
            error_message=str(error),
        )
