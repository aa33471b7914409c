#!/usr/bin/env python3

"""
Pytest coverage for asset resolution.
"""

# Standard Library
import base64
import io
import os
import sys
import tempfile

# PIP3 modules
import PIL.Image
import pytest
import requests

REPO_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if REPO_ROOT not in sys.path:
	sys.path.insert(0, REPO_ROOT)

# local repo modules
from castmixlib.core import models
from castmixlib.core.errors import AssetDecodeError
from castmixlib.core.errors import AssetFetchError
from castmixlib.media import resolver as resolver_module
from castmixlib.media.resolver import AssetResolver

#============================================

def _png_bytes() -> bytes:
	buffer = io.BytesIO()
	PIL.Image.new("RGB", (8, 6), color=(200, 40, 40)).save(buffer, format="PNG")
	return buffer.getvalue()

def _asset(kind: str, form: str, value: str, role: str = None) -> models.MediaAsset:
	return models.MediaAsset(role=role or kind, kind=kind, source_form=form,
		value=value)

#============================================

class FakeResponse():
	def __init__(self, status_code: int, body: bytes = b'',
		content_type: str = None):
		self.status_code = status_code
		self.body = body
		self.headers = {}
		if content_type is not None:
			self.headers['Content-Type'] = content_type
		self.closed = False

	def iter_content(self, chunk_size: int = 1):
		for index in range(0, len(self.body), 4):
			yield self.body[index:index + 4]

	def close(self) -> None:
		self.closed = True

#============================================

def test_inline_payload_with_data_prefix() -> None:
	payload = base64.b64encode(_png_bytes()).decode('ascii')
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('image', 'inline', f"data:image/png;base64,{payload}", 'chart')
		out_file = AssetResolver(temp_dir).resolve(asset)
		assert out_file == os.path.join(temp_dir, 'chart.png')
		assert asset.resolved_path == out_file
		assert asset.mime_type == 'image/png'
		with open(out_file, 'rb') as handle:
			assert handle.read() == _png_bytes()
		assert asset.size_bytes == len(_png_bytes())

#============================================

def test_inline_payload_without_prefix() -> None:
	raw = b"ID3 not really an mp3 but bytes are bytes"
	payload = base64.b64encode(raw).decode('ascii')
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('audio', 'inline', payload, 'music')
		out_file = AssetResolver(temp_dir).resolve(asset)
		assert out_file.endswith('music.mp3')
		with open(out_file, 'rb') as handle:
			assert handle.read() == raw

#============================================

def test_audio_mp3_media_type_is_accepted() -> None:
	payload = base64.b64encode(b"abc123").decode('ascii')
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('audio', 'inline', f"data:audio/mp3;base64,{payload}")
		out_file = AssetResolver(temp_dir).resolve(asset)
		assert out_file.endswith('.mp3')

#============================================

def test_inline_resolution_is_byte_identical() -> None:
	"""
	Resolving the same inline payload twice yields identical files.
	"""
	payload = "data:image/png;base64," + base64.b64encode(_png_bytes()).decode('ascii')
	with tempfile.TemporaryDirectory() as first_dir, \
		tempfile.TemporaryDirectory() as second_dir:
		first = AssetResolver(first_dir).resolve(_asset('image', 'inline', payload))
		second = AssetResolver(second_dir).resolve(_asset('image', 'inline', payload))
		with open(first, 'rb') as handle_a, open(second, 'rb') as handle_b:
			assert handle_a.read() == handle_b.read()

#============================================

def test_invalid_base64_is_a_decode_error() -> None:
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('audio', 'inline', "data:audio/mpeg;base64,@@not*base64@@")
		with pytest.raises(AssetDecodeError) as excinfo:
			AssetResolver(temp_dir).resolve(asset)
		assert excinfo.value.stage == 'resolve'

#============================================

def test_unexpected_media_type_is_a_decode_error() -> None:
	payload = base64.b64encode(b"hello").decode('ascii')
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('image', 'inline', f"data:text/plain;base64,{payload}")
		with pytest.raises(AssetDecodeError):
			AssetResolver(temp_dir).resolve(asset)

#============================================

def test_non_image_chart_is_a_decode_error() -> None:
	payload = base64.b64encode(b"definitely not a png").decode('ascii')
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('image', 'inline', f"data:image/png;base64,{payload}")
		with pytest.raises(AssetDecodeError):
			AssetResolver(temp_dir).resolve(asset)

#============================================

def test_data_uri_without_base64_flag_is_malformed() -> None:
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('image', 'inline', "data:image/png,rawtext")
		with pytest.raises(AssetFetchError):
			AssetResolver(temp_dir).resolve(asset)

#============================================

def test_empty_inline_payload_is_a_decode_error() -> None:
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('video', 'inline', "data:video/mp4;base64,")
		with pytest.raises(AssetDecodeError):
			AssetResolver(temp_dir).resolve(asset)

#============================================

def test_url_download_follows_redirects(monkeypatch) -> None:
	calls = []

	def _fake_get(url, **kwargs):
		calls.append((url, kwargs))
		return FakeResponse(200, b"videobytes", 'video/mp4; charset=binary')

	monkeypatch.setattr(resolver_module.requests, 'get', _fake_get)
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('video', 'url', "https://cdn.example.com/clips/talk?sig=abc")
		out_file = AssetResolver(temp_dir, fetch_timeout=12).resolve(asset)
		assert out_file == os.path.join(temp_dir, 'video.mp4')
		with open(out_file, 'rb') as handle:
			assert handle.read() == b"videobytes"
	assert len(calls) == 1
	assert calls[0][1]['allow_redirects'] is True
	assert calls[0][1]['timeout'] == 12

#============================================

def test_url_non_success_status_is_fatal(monkeypatch) -> None:
	calls = []

	def _fake_get(url, **kwargs):
		calls.append(url)
		return FakeResponse(403, b"expired")

	monkeypatch.setattr(resolver_module.requests, 'get', _fake_get)
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('video', 'url', "https://cdn.example.com/talk.mp4")
		with pytest.raises(AssetFetchError) as excinfo:
			AssetResolver(temp_dir).resolve(asset)
		assert "403" in str(excinfo.value)
	# fetched exactly once, no retry
	assert len(calls) == 1

#============================================

def test_url_network_failure_is_a_fetch_error(monkeypatch) -> None:
	def _fake_get(url, **kwargs):
		raise requests.ConnectionError("connection refused")

	monkeypatch.setattr(resolver_module.requests, 'get', _fake_get)
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('audio', 'url', "http://music.example.com/bed.mp3")
		with pytest.raises(AssetFetchError):
			AssetResolver(temp_dir).resolve(asset)

#============================================

def test_local_path_is_copied_into_workspace() -> None:
	with tempfile.TemporaryDirectory() as source_dir, \
		tempfile.TemporaryDirectory() as work_dir:
		source_file = os.path.join(source_dir, "Sample.MP4")
		with open(source_file, 'wb') as handle:
			handle.write(b"local video")
		asset = _asset('video', 'path', source_file)
		out_file = AssetResolver(work_dir).resolve(asset)
		assert os.path.dirname(out_file) == work_dir
		assert out_file.endswith('video.mp4')

#============================================

def test_missing_local_path_is_a_fetch_error() -> None:
	with tempfile.TemporaryDirectory() as work_dir:
		asset = _asset('video', 'path', os.path.join(work_dir, 'nope.mp4'))
		with pytest.raises(AssetFetchError):
			AssetResolver(work_dir).resolve(asset)

#============================================

def test_asset_is_resolved_only_once() -> None:
	payload = base64.b64encode(b"xyz").decode('ascii')
	with tempfile.TemporaryDirectory() as temp_dir:
		asset = _asset('audio', 'inline', payload)
		resolver = AssetResolver(temp_dir)
		resolver.resolve(asset)
		with pytest.raises(AssetFetchError):
			resolver.resolve(asset)
