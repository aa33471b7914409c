#!/usr/bin/env python3

"""
Pytest coverage for request loading and render settings.
"""

# Standard Library
import os
import sys
import tempfile
from decimal import Decimal
from fractions import Fraction

# PIP3 modules
import pytest

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from castmixlib.core import config
from castmixlib.core.errors import RequestError
from castmixlib.core.loader import RequestLoader

#============================================

def _write(temp_dir: str, name: str, lines: list) -> str:
	path = os.path.join(temp_dir, name)
	with open(path, 'w') as handle:
		handle.write("\n".join(lines))
		handle.write("\n")
	return path

#============================================

def test_yaml_request_file() -> None:
	with tempfile.TemporaryDirectory() as temp_dir:
		lines = []
		lines.append("video: {form: url, value: \"https://cdn.example.com/talk.mp4\"}")
		lines.append("chart: {form: inline, value: \"data:image/png;base64,AAAA\"}")
		lines.append("audio: {form: localPath, value: /srv/music/bed.mp3}")
		lines.append("policy:")
		lines.append("  breakWindow: {start: 10, duration: 5}")
		lines.append("  audioMixWeights: {voice: 1.0, music: 0.2}")
		lines.append("  overlayPosition: [24, 16]")
		lines.append("delivery: uploaded")
		lines.append("outputName: match-7.mp4")
		lines.append("settings:")
		lines.append("  fps: 30000/1001")
		lines.append("  channels: mono")
		lines.append("  renderTimeout: 90")
		request_file = _write(temp_dir, 'request.yaml', lines)
		request = RequestLoader(request_file).load()
	assert request.video.source_form == 'url'
	assert request.chart.kind == 'image'
	assert request.policy.background_audio.source_form == 'path'
	assert request.policy.background_audio.role == 'music'
	assert request.policy.break_window.start == Decimal(10)
	assert request.policy.mix_weights.music == 0.2
	assert request.policy.overlay_position == (24, 16)
	assert request.delivery == 'uploaded'
	assert request.output_name == 'match-7.mp4'
	assert request.settings.fps == Fraction(30000, 1001)
	assert (request.settings.channels, request.settings.audio_mode) == (1, 'mono')
	assert request.settings.render_timeout == 90.0
	assert len(request.assets) == 3

#============================================

def test_defaults_and_shorthand_assets() -> None:
	request = RequestLoader({
		'video': "/data/talk.mp4",
		'chart': "https://charts.example.com/c.png",
	}).load()
	assert request.video.source_form == 'path'
	assert request.chart.source_form == 'url'
	assert request.policy.background_audio is None
	assert request.policy.overlay_window.end == Decimal(5)
	assert request.policy.mix_weights.voice == 1.0
	assert request.delivery == 'inline'
	assert request.output_name.startswith("commentary-")
	assert request.settings.sample_rate == 48000

#============================================

def test_null_overlay_window_disables_overlay() -> None:
	request = RequestLoader({
		'video': "/data/talk.mp4",
		'chart': "/data/chart.png",
		'policy': {'overlayWindow': None},
	}).load()
	assert request.policy.overlay_window is None

#============================================

@pytest.mark.parametrize("data", [
	{'chart': "/c.png"},
	{'video': "/v.mp4", 'chart': "/c.png", 'audio': "/a.mp3",
		'backgroundAudio': "/b.mp3"},
	{'video': {'form': 'ftp', 'value': "x"}, 'chart': "/c.png"},
	{'video': {'form': 'path', 'value': ""}, 'chart': "/c.png"},
	{'video': "/v.mp4", 'chart': "/c.png",
		'policy': {'overlayWindow': {'start': 5, 'end': 5}}},
	{'video': "/v.mp4", 'chart': "/c.png",
		'policy': {'breakWindow': {'start': 3, 'duration': 0}}},
	{'video': "/v.mp4", 'chart': "/c.png",
		'policy': {'audioMixWeights': {'voice': -1}}},
	{'video': "/v.mp4", 'chart': "/c.png", 'policy': {'overlayScale': 1.5}},
	{'video': "/v.mp4", 'chart': "/c.png", 'policy': {'chartFit': 'stretch'}},
	{'video': "/v.mp4", 'chart': "/c.png", 'delivery': 'email'},
	{'video': "/v.mp4", 'chart': "/c.png", 'settings': {'crf': 'high'}},
	{'video': "/v.mp4", 'chart': "/c.png", 'settings': {'bogus': 1}},
])
def test_invalid_requests_are_rejected(data: dict) -> None:
	with pytest.raises(RequestError) as excinfo:
		RequestLoader(data).load()
	assert excinfo.value.to_response()['stage'] == 'request'

#============================================

def test_missing_request_file() -> None:
	with pytest.raises(RequestError):
		RequestLoader("/nonexistent/request.yaml").load()

#============================================

def test_config_file_supplies_base_settings() -> None:
	with tempfile.TemporaryDirectory() as temp_dir:
		lines = []
		lines.append("settings:")
		lines.append("  crf: 28")
		lines.append("  preset: fast")
		lines.append("  durationTolerance: 0.1")
		config_file = _write(temp_dir, 'castmix.yaml', lines)
		base = config.load_settings_file(config_file)
	assert base.crf == 28
	assert base.duration_tolerance == Decimal('0.1')
	request = RequestLoader({
		'video': "/v.mp4",
		'chart': "/c.png",
		'settings': {'preset': 'slow'},
	}, settings=base, setting_overrides={'keep_temp': True, 'cache_dir': None}).load()
	assert request.settings.crf == 28
	assert request.settings.preset == 'slow'
	assert request.settings.keep_temp is True
	assert request.settings.cache_dir is None

#============================================

def test_unknown_override_is_rejected() -> None:
	with pytest.raises(RequestError):
		config.RenderSettings().with_overrides({'nonsense': 1})

#============================================

def test_fps_resolution_order() -> None:
	settings = config.RenderSettings()
	assert config.resolve_fps(settings, Fraction(25, 1)) == Fraction(25, 1)
	assert config.resolve_fps(settings, None) == Fraction(30, 1)
	settings = config.parse_settings({'fps': 24})
	assert config.resolve_fps(settings, Fraction(25, 1)) == Fraction(24, 1)

#============================================

def test_chart_background_is_checked_at_load_time() -> None:
	request = RequestLoader({
		'video': "/v.mp4",
		'chart': "/c.png",
		'policy': {'chartBackground': "#102030"},
	}).load()
	assert request.policy.chart_background == "#102030"
	with pytest.raises(RequestError) as excinfo:
		RequestLoader({
			'video': "/v.mp4",
			'chart': "/c.png",
			'policy': {'chartBackground': "not-a-colour"},
		}).load()
	assert "chartBackground" in str(excinfo.value)

#============================================

def test_malformed_config_file_is_a_request_error() -> None:
	with tempfile.TemporaryDirectory() as temp_dir:
		config_file = _write(temp_dir, 'broken.yaml', [
			"settings:",
			"  crf: [28",
		])
		with pytest.raises(RequestError) as excinfo:
			config.load_settings_file(config_file)
	assert excinfo.value.stage == 'request'
