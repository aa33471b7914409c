#!/usr/bin/env python3

#python wrapper for ffprobe

import json
import subprocess
from decimal import Decimal
from decimal import InvalidOperation
from castmixlib.core import models
from castmixlib.core import utils
from castmixlib.core.errors import ProbeError

#===============================
def getMediaInfo(mediafile: str, ffprobe_bin: str = 'ffprobe',
	timeout: float = 30.0) -> dict:
	cmd = [ffprobe_bin, '-v', 'error', '-show_format', '-show_streams',
		'-of', 'json', mediafile]
	try:
		result = utils.runCmd(cmd, timeout=timeout)
	except subprocess.TimeoutExpired as exc:
		raise ProbeError(f"ffprobe timed out after {timeout}s on {mediafile}",
			backend_trace=utils.format_cmd(cmd)) from exc
	except OSError as exc:
		raise ProbeError(f"could not run {ffprobe_bin}: {exc}",
			backend_trace=utils.format_cmd(cmd)) from exc
	trace = utils.format_cmd(cmd) + "\n" + utils.trace_tail(result.stderr)
	if result.returncode != 0:
		raise ProbeError(f"ffprobe failed (code {result.returncode}) on {mediafile}",
			backend_trace=trace.strip())
	try:
		data = json.loads(result.stdout)
	except ValueError as exc:
		raise ProbeError(f"ffprobe returned unreadable output for {mediafile}",
			backend_trace=trace.strip()) from exc
	if not isinstance(data, dict):
		raise ProbeError(f"ffprobe returned unreadable output for {mediafile}",
			backend_trace=trace.strip())
	return data

#===============================
def _streams_of_type(data: dict, codec_type: str) -> list:
	return [stream for stream in data.get('streams', [])
		if stream.get('codec_type') == codec_type]

#===============================
def getDuration(data: dict, stream: dict = None) -> Decimal:
	raw_duration = data.get('format', {}).get('duration')
	if raw_duration in (None, 'N/A') and stream is not None:
		raw_duration = stream.get('duration')
	if raw_duration in (None, 'N/A'):
		raise ProbeError("media has no duration information")
	try:
		duration = Decimal(str(raw_duration))
	except InvalidOperation as exc:
		raise ProbeError(f"media duration is not a number: {raw_duration}") from exc
	if not duration.is_finite() or duration < 0:
		raise ProbeError(f"media duration is invalid: {raw_duration}")
	return duration

#===============================
def getFrameRate(stream: dict):
	for key in ('avg_frame_rate', 'r_frame_rate'):
		raw_rate = stream.get(key)
		if raw_rate in (None, '', '0/0'):
			continue
		try:
			rate = utils.parse_fps(raw_rate)
		except (ValueError, ZeroDivisionError):
			continue
		if rate > 0:
			return rate
	return None

#===============================
def probeVideo(mediafile: str, ffprobe_bin: str = 'ffprobe',
	timeout: float = 30.0) -> models.MediaProfile:
	data = getMediaInfo(mediafile, ffprobe_bin, timeout)
	video_streams = _streams_of_type(data, 'video')
	if len(video_streams) == 0:
		raise ProbeError(f"no video stream in {mediafile}")
	videotrack = video_streams[0]
	try:
		width = int(videotrack.get('width'))
		height = int(videotrack.get('height'))
	except (TypeError, ValueError) as exc:
		raise ProbeError(f"video stream in {mediafile} has no dimensions") from exc
	if width <= 0 or height <= 0:
		raise ProbeError(f"video stream in {mediafile} has invalid dimensions")
	if videotrack.get('codec_name') is None:
		raise ProbeError(f"video stream in {mediafile} has no codec information")
	duration = getDuration(data, videotrack)
	has_audio = len(_streams_of_type(data, 'audio')) > 0
	profile = models.MediaProfile(
		duration_seconds=duration,
		has_audio=has_audio,
		width=width,
		height=height,
		frame_rate_hint=getFrameRate(videotrack),
	)
	return profile

#===============================
def probeAudio(mediafile: str, ffprobe_bin: str = 'ffprobe',
	timeout: float = 30.0) -> Decimal:
	"""
	Return the duration of an audio track, requiring an audio stream.
	"""
	data = getMediaInfo(mediafile, ffprobe_bin, timeout)
	audio_streams = _streams_of_type(data, 'audio')
	if len(audio_streams) == 0:
		raise ProbeError(f"no audio stream in {mediafile}")
	return getDuration(data, audio_streams[0])
