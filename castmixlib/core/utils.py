#!/usr/bin/env python3

import logging
import os
import re
import shlex
import subprocess
import time
from decimal import Decimal
from fractions import Fraction

logger = logging.getLogger(__name__)

QUIET_MODE = False

#============================================

def set_quiet_mode(quiet: bool) -> None:
	global QUIET_MODE
	QUIET_MODE = bool(quiet)

#============================================

def is_quiet_mode() -> bool:
	return QUIET_MODE

#============================================

def format_cmd(cmd) -> str:
	if isinstance(cmd, str):
		showcmd = cmd.strip()
	else:
		showcmd = shlex.join([str(part) for part in cmd])
	showcmd = re.sub("  *", " ", showcmd)
	return showcmd

#============================================

def runCmd(cmd: list, timeout: float = None) -> subprocess.CompletedProcess:
	"""
	Run a backend command without a shell and capture its output.

	Raises subprocess.TimeoutExpired and OSError to the caller, which
	decides the stage-specific error to report.
	"""
	showcmd = format_cmd(cmd)
	if not is_quiet_mode():
		logger.info(f"CMD: '{showcmd}'")
	result = subprocess.run(cmd, stdout=subprocess.PIPE,
		stderr=subprocess.PIPE, timeout=timeout)
	return result

#============================================

def parse_fps(raw_fps) -> Fraction:
	if raw_fps is None:
		raise ValueError("fps is required")
	if isinstance(raw_fps, Fraction):
		return raw_fps
	if isinstance(raw_fps, int):
		return Fraction(raw_fps, 1)
	if isinstance(raw_fps, float):
		return Fraction(str(raw_fps))
	if isinstance(raw_fps, str):
		if '/' in raw_fps:
			parts = raw_fps.split('/')
			denominator = int(parts[1])
			if denominator == 0:
				raise ValueError(f"invalid frame rate {raw_fps}")
			return Fraction(int(parts[0]), denominator)
		return Fraction(raw_fps)
	raise ValueError("fps must be int, float, or fraction string")

#============================================

def parse_timecode(raw_time) -> Decimal:
	if raw_time is None:
		raise ValueError("time value is required")
	if isinstance(raw_time, bool):
		raise ValueError("time values must be numbers or timecode strings")
	if isinstance(raw_time, Decimal):
		return raw_time
	if isinstance(raw_time, int):
		return Decimal(raw_time)
	if isinstance(raw_time, float):
		return Decimal(str(raw_time))
	if isinstance(raw_time, str):
		value = raw_time.strip()
		if ':' not in value:
			return Decimal(value)
		parts = value.split(':')
		seconds = Decimal(parts.pop())
		minutes = Decimal(parts.pop())
		hours = Decimal(0)
		if len(parts) > 0:
			hours = Decimal(parts.pop())
		return hours * Decimal(3600) + minutes * Decimal(60) + seconds
	raise ValueError("time values must be int, float, or timecode string")

#============================================

def seconds_text(value: Decimal) -> str:
	"""
	Format seconds for ffmpeg filter arguments, millisecond precision.
	"""
	quantized = Decimal(value).quantize(Decimal('0.001'))
	return f"{quantized:f}"

#============================================

def normalize_channels(raw_channels) -> tuple:
	if raw_channels is None:
		return (2, 'stereo')
	channels = str(raw_channels).lower()
	if channels in ('mono', '1'):
		return (1, 'mono')
	if channels in ('stereo', '2'):
		return (2, 'stereo')
	raise ValueError("channels must be mono or stereo")

#============================================

def ensure_file_exists(filepath: str) -> None:
	if not os.path.exists(filepath):
		raise FileNotFoundError(f"file not found: {filepath}")

#============================================

def file_is_nonempty(filepath: str) -> bool:
	return os.path.isfile(filepath) and os.path.getsize(filepath) > 0

#============================================

def make_timestamp() -> str:
	datestamp = time.strftime("%y%b%d").lower()
	uppercase = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
	hourstamp = uppercase[(time.localtime()[3]) % 26]
	minstamp = f"{time.localtime()[4]:02d}"
	secstamp = uppercase[(time.localtime()[5]) % 26]
	timestamp = datestamp + hourstamp + minstamp + secstamp
	return timestamp

#============================================

def trace_tail(text, max_lines: int = 40) -> str:
	if text is None:
		return ''
	if isinstance(text, bytes):
		text = text.decode('utf-8', errors='replace')
	lines = [line for line in text.splitlines() if line.strip() != '']
	return "\n".join(lines[-max_lines:])
