#!/usr/bin/env python3

import os
from dataclasses import dataclass
from decimal import Decimal
import PIL.ImageColor
import yaml
from castmixlib.core import config
from castmixlib.core import models
from castmixlib.core import utils
from castmixlib.core.errors import RequestError

#============================================

@dataclass
class CompositionRequest():
	video: models.MediaAsset
	chart: models.MediaAsset
	policy: models.CompositionPolicy
	delivery: str = 'inline'
	output_name: str = None
	settings: config.RenderSettings = None

	#============================
	@property
	def assets(self) -> list:
		assets = [self.video, self.chart]
		if self.policy.background_audio is not None:
			assets.append(self.policy.background_audio)
		return assets

#============================================

class RequestLoader():
	def __init__(self, request_source, settings: config.RenderSettings = None,
		setting_overrides: dict = None):
		"""
		request_source is a yaml/json file path or an already-parsed mapping.
		"""
		self.request_source = request_source
		self.settings = settings
		self.setting_overrides = setting_overrides or {}

	#============================
	def load(self) -> CompositionRequest:
		data = self._load_data()
		self._validate_required_keys(data)
		video = self._parse_asset(data.get('video'), 'video', 'video')
		chart = self._parse_asset(data.get('chart'), 'chart', 'image')
		audio_data = data.get('audio', data.get('backgroundAudio'))
		background = None
		if audio_data is not None:
			background = self._parse_asset(audio_data, 'music', 'audio')
		policy = self._parse_policy(data.get('policy', {}), background)
		delivery = self._parse_delivery(data.get('delivery', 'inline'))
		settings = config.parse_settings(data.get('settings'), self.settings)
		settings = settings.with_overrides(self.setting_overrides)
		output_name = data.get('outputName')
		if output_name is None:
			output_name = f"commentary-{utils.make_timestamp()}.mp4"
		request = CompositionRequest(video=video, chart=chart, policy=policy,
			delivery=delivery, output_name=str(output_name), settings=settings)
		return request

	#============================
	def _load_data(self) -> dict:
		if isinstance(self.request_source, dict):
			return self.request_source
		if not os.path.isfile(self.request_source):
			raise RequestError(f"request file not found: {self.request_source}")
		file_size = os.path.getsize(self.request_source)
		if file_size > 10 ** 8:
			raise RequestError("request file is larger than 100MB")
		with open(self.request_source, 'r') as data_file:
			try:
				data = yaml.safe_load(data_file)
			except yaml.YAMLError as exc:
				raise RequestError(f"request file is not valid yaml: {exc}") from exc
		if not isinstance(data, dict):
			raise RequestError("request must be a mapping at the top level")
		return data

	#============================
	def _validate_required_keys(self, data: dict) -> None:
		required_keys = ('video', 'chart')
		for key in required_keys:
			if data.get(key) is None:
				raise RequestError(f"missing required key: {key}")
		if 'audio' in data and 'backgroundAudio' in data:
			raise RequestError("use either audio or backgroundAudio, not both")

	#============================
	def _parse_asset(self, raw_asset, role: str, kind: str) -> models.MediaAsset:
		if isinstance(raw_asset, str):
			return models.MediaAsset(role=role, kind=kind,
				source_form=self._guess_form(raw_asset), value=raw_asset)
		if not isinstance(raw_asset, dict):
			raise RequestError(f"{role} must be a mapping with form and value")
		form = raw_asset.get('form')
		value = raw_asset.get('value')
		if form == 'localPath':
			form = 'path'
		if form not in models.SOURCE_FORMS:
			raise RequestError(
				f"{role}.form must be one of {', '.join(models.SOURCE_FORMS)}"
			)
		if not isinstance(value, str) or value.strip() == '':
			raise RequestError(f"{role}.value must be a non-empty string")
		return models.MediaAsset(role=role, kind=kind, source_form=form,
			value=value)

	#============================
	def _guess_form(self, value: str) -> str:
		lowered = value.strip().lower()
		if lowered.startswith('data:'):
			return 'inline'
		if lowered.startswith('http://') or lowered.startswith('https://'):
			return 'url'
		return 'path'

	#============================
	def _parse_policy(self, policy_data: dict,
		background: models.MediaAsset) -> models.CompositionPolicy:
		if policy_data is None:
			policy_data = {}
		if not isinstance(policy_data, dict):
			raise RequestError("policy must be a mapping")
		policy = models.CompositionPolicy(background_audio=background)
		if 'overlayWindow' in policy_data:
			policy.overlay_window = self._parse_overlay_window(
				policy_data.get('overlayWindow'))
		if policy_data.get('breakWindow') is not None:
			policy.break_window = self._parse_break_window(
				policy_data.get('breakWindow'))
		if policy_data.get('audioMixWeights') is not None:
			policy.mix_weights = self._parse_mix_weights(
				policy_data.get('audioMixWeights'))
		if policy_data.get('overlayPosition') is not None:
			policy.overlay_position = self._parse_position(
				policy_data.get('overlayPosition'))
		if policy_data.get('overlayScale') is not None:
			scale = self._parse_number(policy_data.get('overlayScale'),
				'policy.overlayScale')
			if scale <= 0 or scale > 1:
				raise RequestError("policy.overlayScale must be in (0, 1]")
			policy.overlay_scale = scale
		if policy_data.get('chartFit') is not None:
			chart_fit = str(policy_data.get('chartFit')).lower()
			if chart_fit not in ('contain', 'cover'):
				raise RequestError("policy.chartFit must be contain or cover")
			policy.chart_fit = chart_fit
		if policy_data.get('chartBackground') is not None:
			chart_background = str(policy_data.get('chartBackground'))
			try:
				PIL.ImageColor.getrgb(chart_background)
			except ValueError as exc:
				raise RequestError(
					f"policy.chartBackground is not a color: {chart_background}"
				) from exc
			policy.chart_background = chart_background
		if policy_data.get('loopBackground') is not None:
			policy.loop_background = bool(policy_data.get('loopBackground'))
		return policy

	#============================
	def _parse_overlay_window(self, window) -> models.OverlayWindow:
		if window is None:
			return None
		if not isinstance(window, dict):
			raise RequestError("policy.overlayWindow must be a mapping")
		start = self._parse_time(window.get('start', 0), 'overlayWindow.start')
		end = self._parse_time(window.get('end'), 'overlayWindow.end')
		if start < 0:
			raise RequestError("overlayWindow.start must not be negative")
		if end <= start:
			raise RequestError("overlayWindow requires start < end")
		return models.OverlayWindow(start=start, end=end)

	#============================
	def _parse_break_window(self, window) -> models.BreakWindow:
		if not isinstance(window, dict):
			raise RequestError("policy.breakWindow must be a mapping")
		start = self._parse_time(window.get('start'), 'breakWindow.start')
		duration = self._parse_time(window.get('duration'), 'breakWindow.duration')
		if start < 0:
			raise RequestError("breakWindow.start must not be negative")
		if duration <= 0:
			raise RequestError("breakWindow.duration must be positive")
		return models.BreakWindow(start=start, duration=duration)

	#============================
	def _parse_mix_weights(self, weights) -> models.MixWeights:
		if not isinstance(weights, dict):
			raise RequestError("policy.audioMixWeights must be a mapping")
		defaults = models.MixWeights()
		voice = self._parse_number(weights.get('voice', defaults.voice),
			'audioMixWeights.voice')
		music = self._parse_number(weights.get('music', defaults.music),
			'audioMixWeights.music')
		if voice < 0 or music < 0:
			raise RequestError("audioMixWeights must not be negative")
		return models.MixWeights(voice=voice, music=music)

	#============================
	def _parse_position(self, position) -> tuple:
		if isinstance(position, dict):
			raw = (position.get('x', 0), position.get('y', 0))
		elif isinstance(position, (list, tuple)) and len(position) == 2:
			raw = tuple(position)
		else:
			raise RequestError("policy.overlayPosition must be {x, y} or [x, y]")
		x_pos = int(self._parse_number(raw[0], 'overlayPosition.x'))
		y_pos = int(self._parse_number(raw[1], 'overlayPosition.y'))
		return (x_pos, y_pos)

	#============================
	def _parse_delivery(self, delivery) -> str:
		value = str(delivery).lower()
		if value not in models.DELIVERY_MODES:
			raise RequestError(
				f"delivery must be one of {', '.join(models.DELIVERY_MODES)}"
			)
		return value

	#============================
	def _parse_time(self, raw_value, key: str) -> Decimal:
		try:
			return utils.parse_timecode(raw_value)
		except (ValueError, ArithmeticError) as exc:
			raise RequestError(f"{key} is not a valid time: {raw_value}") from exc

	#============================
	def _parse_number(self, raw_value, key: str) -> float:
		if isinstance(raw_value, bool):
			raise RequestError(f"{key} must be a number")
		try:
			return float(raw_value)
		except (TypeError, ValueError) as exc:
			raise RequestError(f"{key} must be a number") from exc
