#!/usr/bin/env python3

import logging
import subprocess
import threading
import time
from castmixlib.core import utils
from castmixlib.core.errors import RenderError
from castmixlib.core.errors import RenderTimeout

logger = logging.getLogger(__name__)

PROGRESS_KEYS = {
	'frame', 'fps', 'bitrate', 'total_size', 'out_time_us', 'out_time_ms',
	'out_time', 'dup_frames', 'drop_frames', 'speed', 'progress',
}

TRACE_LINES = 200

#============================================

def _is_progress_line(line: str) -> bool:
	if '=' not in line:
		return False
	key = line.split('=', 1)[0].strip()
	return key in PROGRESS_KEYS or key.startswith('stream_')

#============================================

def _parse_out_seconds(line: str):
	(key, value) = line.split('=', 1)
	if key not in ('out_time_us', 'out_time_ms'):
		return None
	try:
		# ffmpeg reports out_time_ms in microseconds as well
		return int(value) / 1000000.0
	except ValueError:
		return None

#============================================

class FfmpegRun():
	def __init__(self, cmd: list, total_seconds: float, timeout: float = None,
		cancel_event: threading.Event = None, progress_callback=None):
		self.cmd = list(cmd)
		self.total_seconds = total_seconds
		self.timeout = timeout
		self.cancel_event = cancel_event
		self.progress_callback = progress_callback
		self.trace = []
		self.returncode = None
		self.timed_out = False
		self.cancelled = False
		self._last_percent = -1.0

	#============================
	def command_line(self) -> str:
		return utils.format_cmd(self.cmd)

	#============================
	def backend_trace(self) -> str:
		lines = [f"CMD: {self.command_line()}"]
		lines.extend(self.trace[-40:])
		return "\n".join(lines)

	#============================
	def run(self) -> int:
		# progress goes to stdout ahead of the output path
		cmd = self.cmd[:-1] + ['-progress', 'pipe:1', '-nostats', self.cmd[-1]]
		if not utils.is_quiet_mode():
			logger.info(f"CMD: '{utils.format_cmd(cmd)}'")
		try:
			process = subprocess.Popen(cmd, stdout=subprocess.PIPE,
				stderr=subprocess.STDOUT, text=True, encoding='utf-8',
				errors='replace', bufsize=1)
		except OSError as exc:
			raise RenderError(f"could not run {cmd[0]}: {exc}",
				backend_trace=self.backend_trace()) from exc
		finished = threading.Event()
		watchdog = threading.Thread(target=self._watch, args=(process, finished),
			daemon=True)
		watchdog.start()
		try:
			for raw_line in process.stdout:
				self._handle_line(raw_line.strip())
			process.wait()
		finally:
			finished.set()
			watchdog.join(timeout=5)
			if process.poll() is None:
				process.kill()
				process.wait()
			if process.stdout is not None:
				process.stdout.close()
		self.returncode = process.returncode
		if self.timed_out:
			raise RenderTimeout(f"render timed out after {self.timeout}s",
				backend_trace=self.backend_trace())
		if self.cancelled:
			raise RenderTimeout("render was cancelled by the caller",
				backend_trace=self.backend_trace())
		if self.returncode != 0:
			raise RenderError(f"ffmpeg failed (code {self.returncode})",
				backend_trace=self.backend_trace())
		self._report(self.total_seconds)
		return self.returncode

	#============================
	def _watch(self, process, finished: threading.Event) -> None:
		deadline = None
		if self.timeout is not None:
			deadline = time.monotonic() + self.timeout
		while not finished.wait(0.1):
			if self.cancel_event is not None and self.cancel_event.is_set():
				self.cancelled = True
				process.kill()
				return
			if deadline is not None and time.monotonic() >= deadline:
				self.timed_out = True
				process.kill()
				return

	#============================
	def _handle_line(self, line: str) -> None:
		if line == '':
			return
		if not _is_progress_line(line):
			self.trace.append(line)
			if len(self.trace) > TRACE_LINES:
				self.trace = self.trace[-TRACE_LINES:]
			return
		seconds = _parse_out_seconds(line)
		if seconds is not None:
			self._report(seconds)

	#============================
	def _report(self, seconds: float) -> None:
		if self.progress_callback is None:
			return
		if self.total_seconds and self.total_seconds > 0:
			percent = min(100.0, max(0.0, 100.0 * seconds / self.total_seconds))
		else:
			percent = 0.0
		if percent <= self._last_percent:
			return
		self._last_percent = percent
		self.progress_callback(percent, seconds)

#============================================

def runFfmpeg(cmd: list, total_seconds: float, timeout: float = None,
	cancel_event: threading.Event = None, progress_callback=None) -> FfmpegRun:
	ffmpeg_run = FfmpegRun(cmd, total_seconds, timeout=timeout,
		cancel_event=cancel_event, progress_callback=progress_callback)
	ffmpeg_run.run()
	return ffmpeg_run
