#!/usr/bin/env python3

import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from fractions import Fraction
import yaml
from castmixlib.core import utils
from castmixlib.core.errors import RequestError

#============================================

# request/config key -> RenderSettings attribute
SETTING_KEYS = {
	'fps': 'fps',
	'sampleRate': 'sample_rate',
	'channels': 'channels',
	'videoCodec': 'video_codec',
	'crf': 'crf',
	'preset': 'preset',
	'pixelFormat': 'pixel_format',
	'audioCodec': 'audio_codec',
	'audioBitrate': 'audio_bitrate',
	'fetchTimeout': 'fetch_timeout',
	'probeTimeout': 'probe_timeout',
	'renderTimeout': 'render_timeout',
	'cleanupGrace': 'cleanup_grace',
	'durationTolerance': 'duration_tolerance',
	'keepTemp': 'keep_temp',
	'cacheDir': 'cache_dir',
	'ffmpeg': 'ffmpeg_bin',
	'ffprobe': 'ffprobe_bin',
}

DEFAULT_FPS = Fraction(30, 1)

#============================================

@dataclass(frozen=True)
class RenderSettings():
	fps: Fraction = None
	sample_rate: int = 48000
	channels: int = 2
	audio_mode: str = 'stereo'
	video_codec: str = 'libx264'
	crf: int = 23
	preset: str = 'veryfast'
	pixel_format: str = 'yuv420p'
	audio_codec: str = 'aac'
	audio_bitrate: str = '192k'
	fetch_timeout: float = 60.0
	probe_timeout: float = 30.0
	render_timeout: float = 600.0
	cleanup_grace: float = 0.5
	duration_tolerance: Decimal = Decimal('0.040')
	keep_temp: bool = False
	cache_dir: str = None
	ffmpeg_bin: str = 'ffmpeg'
	ffprobe_bin: str = 'ffprobe'

	#============================
	def with_overrides(self, overrides: dict) -> 'RenderSettings':
		"""
		Return a copy with attribute-named overrides applied, skipping None.
		"""
		known = {item.name for item in fields(self)}
		changes = {}
		for key, value in overrides.items():
			if key not in known:
				raise RequestError(f"unknown render setting: {key}")
			if value is not None:
				changes[key] = value
		return replace(self, **changes)

#============================================

def _positive_number(raw_value, key: str) -> float:
	try:
		value = float(raw_value)
	except (TypeError, ValueError) as exc:
		raise RequestError(f"settings.{key} must be a number") from exc
	if value <= 0:
		raise RequestError(f"settings.{key} must be positive")
	return value

#============================================

def parse_settings(data: dict, base: RenderSettings = None) -> RenderSettings:
	if base is None:
		base = RenderSettings()
	if data is None:
		return base
	if not isinstance(data, dict):
		raise RequestError("settings must be a mapping")
	changes = {}
	for key, raw_value in data.items():
		attr = SETTING_KEYS.get(key)
		if attr is None:
			raise RequestError(f"unknown setting: {key}")
		if raw_value is None:
			continue
		if attr == 'fps':
			try:
				changes['fps'] = utils.parse_fps(raw_value)
			except (ValueError, ZeroDivisionError) as exc:
				raise RequestError(f"settings.fps is invalid: {exc}") from exc
			if changes['fps'] <= 0:
				raise RequestError("settings.fps must be positive")
		elif attr == 'channels':
			try:
				(channel_count, audio_mode) = utils.normalize_channels(raw_value)
			except ValueError as exc:
				raise RequestError(f"settings.{exc}") from exc
			changes['channels'] = channel_count
			changes['audio_mode'] = audio_mode
		elif attr in ('sample_rate', 'crf'):
			changes[attr] = int(_positive_number(raw_value, key))
		elif attr in ('fetch_timeout', 'probe_timeout', 'render_timeout'):
			changes[attr] = _positive_number(raw_value, key)
		elif attr == 'cleanup_grace':
			try:
				grace = float(raw_value)
			except (TypeError, ValueError) as exc:
				raise RequestError("settings.cleanupGrace must be a number") from exc
			if grace < 0:
				raise RequestError("settings.cleanupGrace must not be negative")
			changes[attr] = grace
		elif attr == 'duration_tolerance':
			try:
				tolerance = utils.parse_timecode(raw_value)
			except (ValueError, ArithmeticError) as exc:
				raise RequestError("settings.durationTolerance is invalid") from exc
			if tolerance < 0:
				raise RequestError("settings.durationTolerance must not be negative")
			changes[attr] = tolerance
		elif attr == 'keep_temp':
			changes[attr] = bool(raw_value)
		else:
			changes[attr] = str(raw_value)
	return replace(base, **changes)

#============================================

def load_settings_file(config_file: str) -> RenderSettings:
	if not os.path.isfile(config_file):
		raise RequestError(f"config file not found: {config_file}")
	with open(config_file, 'r') as data_file:
		try:
			data = yaml.safe_load(data_file)
		except yaml.YAMLError as exc:
			raise RequestError(f"config file is not valid yaml: {exc}") from exc
	if data is None:
		return RenderSettings()
	if not isinstance(data, dict):
		raise RequestError("config file must be a mapping at the top level")
	if 'settings' in data:
		data = data['settings']
	return parse_settings(data)

#============================================

def resolve_fps(settings: RenderSettings, frame_rate_hint: Fraction) -> Fraction:
	if settings.fps is not None:
		return settings.fps
	if frame_rate_hint is not None and frame_rate_hint > 0:
		return frame_rate_hint
	return DEFAULT_FPS
